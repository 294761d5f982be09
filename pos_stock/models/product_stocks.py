from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    ForeignKey,
    CheckConstraint,
    TIMESTAMP,
    func,
)
from pos_stock.db.base import Base


class StockRecord(Base):
    """商品库存账本（每个商品一条）

    可用库存 = quantity - reserved_quantity，只在读取时计算，从不落库。
    """

    __tablename__ = "product_stocks"

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        primary_key=True,
        comment="商品ID",
    )

    quantity = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="实际在库数量",
    )

    reserved_quantity = Column(
        Integer,
        nullable=False,
        server_default="0",
        comment="收银中已预占数量",
    )

    minimum_stock = Column(
        Integer,
        nullable=True,
        comment="最低库存（低库存查询用）",
    )

    reorder_point = Column(
        Integer,
        nullable=True,
        comment="补货点",
    )

    version = Column(
        Integer,
        nullable=False,
        comment="乐观锁版本号",
    )

    last_stock_update = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="最后一次变更时间",
    )

    last_stock_update_by_user_id = Column(
        BigInteger,
        nullable=True,
        comment="最后一次变更的操作人",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint(
            "reserved_quantity >= 0",
            name="ck_reserved_quantity_non_negative",
        ),
    )

    __mapper_args__ = {
        "version_id_col": version,
    }

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity

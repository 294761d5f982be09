import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    TIMESTAMP,
    Enum,
    UniqueConstraint,
    Index,
    ForeignKey,
    func,
)
from pos_stock.db.base import Base, BigIntPK



# 1️ 预占状态枚举（数据库 ENUM）

class HoldStatus(str, enum.Enum):
    RESERVED = "RESERVED"     # 已预占
    COMMITTED = "COMMITTED"   # 已随销售扣减
    RELEASED = "RELEASED"     # 已释放



# 2️ 购物车预占表

class CartReservation(Base):
    """某个收银会话对某个商品当前持有的预占

    同一会话同一商品只有一条记录，追加商品时累加 quantity（合并预占）。
    """

    __tablename__ = "cart_reservations"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    cart_session_id = Column(
        String(64),
        nullable=False,
        index=True,
        comment="收银会话ID",
    )

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="商品ID",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="当前持有的预占数量",
    )

    status = Column(
        Enum(
            HoldStatus,
            name="hold_status_type",
        ),
        nullable=False,
        default=HoldStatus.RESERVED,
        comment="预占状态",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    expired_at = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="预占过期时间（为空表示不过期）",
    )

    __table_args__ = (
        UniqueConstraint(
            "cart_session_id",
            "product_id",
            name="uq_cart_product",
        ),
    )



# 3️ 高频查询优化索引

Index(
    "idx_cart_reservation_status_expired",
    CartReservation.status,
    CartReservation.expired_at,
)

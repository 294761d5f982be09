import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    TIMESTAMP,
    Enum,
    Index,
    event,
    func,
)
from pos_stock.core.exceptions import ImmutableAuditEntryError
from pos_stock.db.base import Base, BigIntPK

# 1定义库存变更类型（数据库 ENUM）
class MovementType(str, enum.Enum):
    CREATION = "CREATION"      # 初始建档
    ADJUSTMENT = "ADJUSTMENT"  # 人工调整
    RESERVE = "RESERVE"        # 预占库存
    RELEASE = "RELEASE"        # 释放预占
    SALE = "SALE"              # 销售扣减
# 2️库存审计流水（只追加，不修改、不删除）
class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    product_id = Column(
        BigInteger,
        nullable=False,
        index=True,
        comment="商品ID",
    )

    movement_type = Column(
        Enum(
            MovementType,
            name="stock_movement_type",
        ),
        nullable=False,
        comment="库存变更类型",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="变更数量（绝对值）",
    )

    previous_quantity = Column(
        Integer,
        nullable=False,
        comment="变更前数量（预占/释放记录的是可用库存）",
    )

    new_quantity = Column(
        Integer,
        nullable=False,
        comment="变更后数量",
    )

    actor_user_id = Column(
        BigInteger,
        nullable=True,
        comment="操作人",
    )

    note = Column(
        String(500),
        nullable=True,
    )

    reference = Column(
        String(100),
        nullable=True,
        index=True,
        comment="关联单据：发票号 / 购物车ID / 系统生成",
    )

    source = Column(
        String(50),
        nullable=True,
        comment="来源：pos / manual / cleanup_job",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

# 3️组合索引（高频查询优化）


Index(
    "idx_stock_movements_product_created_desc",
    StockMovement.product_id,
    StockMovement.created_at.desc(),
)


def _reject_update(mapper, connection, target):
    raise ImmutableAuditEntryError(f"审计流水 {target.id} 不允许修改")


def _reject_delete(mapper, connection, target):
    raise ImmutableAuditEntryError(f"审计流水 {target.id} 不允许删除")


event.listen(StockMovement, "before_update", _reject_update)
event.listen(StockMovement, "before_delete", _reject_delete)

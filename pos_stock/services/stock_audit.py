"""库存审计流水记录器

每一次账本变更都追加一条 StockMovement。记录器只把流水加入调用方的
数据库会话，与被记录的变更在同一个事务中提交或回滚，
不会出现“库存已变但流水丢失”的情况。
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pos_stock.core.context import ActorContext
from pos_stock.models.stock_movements import StockMovement, MovementType

logger = logging.getLogger(__name__)

_REFERENCE_PREFIX = {
    MovementType.CREATION: "STOCK-INIT",
    MovementType.ADJUSTMENT: "STOCK-ADJ",
    MovementType.RESERVE: "STOCK-RSV",
    MovementType.RELEASE: "STOCK-REL",
    MovementType.SALE: "STOCK-EXT",
}


def default_reference(movement_type: MovementType, product_id: int) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{_REFERENCE_PREFIX[movement_type]}-{product_id}-{stamp}"


class StockAuditRecorder:
    """库存审计记录器"""

    def log(
        self,
        db: AsyncSession,
        *,
        product_id: int,
        movement_type: MovementType,
        previous_quantity: int,
        new_quantity: int,
        actor: ActorContext,
        note: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> StockMovement:
        """追加一条流水（纯追加，随调用方事务提交）"""
        entry = StockMovement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=abs(new_quantity - previous_quantity),
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            actor_user_id=actor.user_id,
            note=note,
            reference=reference or default_reference(movement_type, product_id),
            source=actor.source,
        )
        db.add(entry)
        logger.debug(
            f"审计流水: product_id={product_id}, type={movement_type.value}, "
            f"{previous_quantity} -> {new_quantity}"
        )
        return entry

    def log_creation(self, db, product_id, quantity, actor, note=None):
        return self.log(
            db,
            product_id=product_id,
            movement_type=MovementType.CREATION,
            previous_quantity=0,
            new_quantity=quantity,
            actor=actor,
            note=note or "初始建档",
        )

    def log_adjustment(self, db, product_id, previous_quantity, new_quantity, actor, note=None):
        difference = new_quantity - previous_quantity
        if difference > 0:
            default_note = f"库存调增: 增加 {difference} 件"
        elif difference < 0:
            default_note = f"库存调减: 减少 {-difference} 件"
        else:
            default_note = f"库存调整: {previous_quantity} -> {new_quantity}"
        return self.log(
            db,
            product_id=product_id,
            movement_type=MovementType.ADJUSTMENT,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            actor=actor,
            note=note or default_note,
        )

    def log_reserve(self, db, product_id, quantity, available_before, actor, reference=None):
        # 预占流水记录的是可用库存的变化
        return self.log(
            db,
            product_id=product_id,
            movement_type=MovementType.RESERVE,
            previous_quantity=available_before,
            new_quantity=available_before - quantity,
            actor=actor,
            note=f"预占库存: {quantity} 件",
            reference=reference,
        )

    def log_release(self, db, product_id, quantity, available_before, actor, reference=None):
        return self.log(
            db,
            product_id=product_id,
            movement_type=MovementType.RELEASE,
            previous_quantity=available_before,
            new_quantity=available_before + quantity,
            actor=actor,
            note=f"释放预占: {quantity} 件",
            reference=reference,
        )

    def log_sale(self, db, product_id, quantity, previous_quantity, actor, reference=None):
        return self.log(
            db,
            product_id=product_id,
            movement_type=MovementType.SALE,
            previous_quantity=previous_quantity,
            new_quantity=previous_quantity - quantity,
            actor=actor,
            note=f"销售出库: {quantity} 件",
            reference=reference,
        )

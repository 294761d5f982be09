"""库存账本

账本是 quantity / reserved_quantity 的唯一权威来源。每一次变更都在
“商品锁 + 单个数据库事务”中完成，变更与审计流水一起提交。
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pos_stock.core.context import ActorContext
from pos_stock.core.exceptions import (
    DuplicateStockError,
    InvariantViolationError,
    StockNotFoundError,
)
from pos_stock.core.locks import ProductLockManager
from pos_stock.models.product_stocks import StockRecord
from pos_stock.services.stock_audit import StockAuditRecorder

logger = logging.getLogger(__name__)


class StockLedger:
    """库存账本服务"""

    def __init__(
        self,
        db_factory: async_sessionmaker,
        locks: ProductLockManager,
        audit: Optional[StockAuditRecorder] = None,
        allow_oversell: bool = False,
    ):
        self.db_factory = db_factory
        self.locks = locks
        self.audit = audit or StockAuditRecorder()
        self.allow_oversell = allow_oversell

    @asynccontextmanager
    async def unit_of_work(self, product_ids: Iterable[int] = ()) -> AsyncIterator[AsyncSession]:
        """持有相关商品的锁并开启一个事务；正常退出提交，异常回滚"""
        async with self.locks.hold_many(product_ids):
            async with self.db_factory() as db:
                async with db.begin():
                    yield db

    # ==================== 查询 ====================

    async def load_for_update(self, db: AsyncSession, product_id: int) -> StockRecord:
        """在当前事务内行级加锁读取库存记录"""
        record = (
            await db.execute(
                select(StockRecord)
                .where(StockRecord.product_id == product_id)
                .with_for_update()
            )
        ).scalar_one_or_none()
        if record is None:
            raise StockNotFoundError(product_id)
        return record

    async def get_record(self, product_id: int) -> StockRecord:
        async with self.db_factory() as db:
            record = await db.get(StockRecord, product_id)
        if record is None:
            raise StockNotFoundError(product_id)
        return record

    async def get_available(self, product_id: int) -> int:
        """可用库存 = quantity - reserved_quantity，每次从数据库实时计算"""
        record = await self.get_record(product_id)
        return record.available_quantity

    async def get_low_stock(self) -> List[StockRecord]:
        """在库数量不高于最低库存的商品"""
        async with self.db_factory() as db:
            result = await db.execute(
                select(StockRecord)
                .where(
                    StockRecord.minimum_stock.is_not(None),
                    StockRecord.quantity <= StockRecord.minimum_stock,
                )
                .order_by(StockRecord.product_id)
            )
            return list(result.scalars().all())

    async def get_out_of_stock(self) -> List[StockRecord]:
        async with self.db_factory() as db:
            result = await db.execute(
                select(StockRecord)
                .where(StockRecord.quantity <= 0)
                .order_by(StockRecord.product_id)
            )
            return list(result.scalars().all())

    async def get_reorder_candidates(self) -> List[StockRecord]:
        async with self.db_factory() as db:
            result = await db.execute(
                select(StockRecord)
                .where(
                    StockRecord.reorder_point.is_not(None),
                    StockRecord.quantity <= StockRecord.reorder_point,
                )
                .order_by(StockRecord.product_id)
            )
            return list(result.scalars().all())

    # ==================== 变更 ====================

    async def create_stock(
        self,
        product_id: int,
        quantity: int,
        actor: ActorContext,
        minimum_stock: Optional[int] = None,
        reorder_point: Optional[int] = None,
    ) -> StockRecord:
        """为商品建立库存记录，并写入一条 CREATION 流水"""
        if quantity < 0:
            raise InvariantViolationError("初始库存不能为负数", product_id)

        async with self.unit_of_work([product_id]) as db:
            if await db.get(StockRecord, product_id) is not None:
                raise DuplicateStockError(product_id)
            record = StockRecord(
                product_id=product_id,
                quantity=quantity,
                reserved_quantity=0,
                minimum_stock=minimum_stock,
                reorder_point=reorder_point,
            )
            self._stamp(record, actor)
            db.add(record)
            self.audit.log_creation(db, product_id, quantity, actor)

        logger.info(f"建立库存记录: product_id={product_id}, quantity={quantity}")
        return record

    async def set_quantity(
        self,
        product_id: int,
        new_quantity: int,
        actor: ActorContext,
        note: Optional[str] = None,
    ) -> StockRecord:
        """覆盖在库数量，不影响预占数量；无条件写入 ADJUSTMENT 流水"""
        if new_quantity < 0:
            raise InvariantViolationError("库存数量不能为负数", product_id)

        async with self.unit_of_work([product_id]) as db:
            record = await self.load_for_update(db, product_id)
            previous = record.quantity
            record.quantity = new_quantity
            self.check_invariant(record)
            self._stamp(record, actor)
            self.audit.log_adjustment(db, product_id, previous, new_quantity, actor, note)

        logger.info(f"调整库存: product_id={product_id}, {previous} -> {new_quantity}")
        return record

    def increase_reserved(self, record: StockRecord, amount: int, actor: ActorContext) -> None:
        """预占原语：调用方需已持有商品锁并完成可售校验"""
        if amount <= 0:
            raise InvariantViolationError("预占数量必须大于0", record.product_id)
        record.reserved_quantity += amount
        self.check_invariant(record)
        self._stamp(record, actor)

    def decrease_reserved(self, record: StockRecord, amount: int, actor: ActorContext) -> None:
        """释放原语：不允许释放超过已预占的数量"""
        if amount <= 0:
            raise InvariantViolationError("释放数量必须大于0", record.product_id)
        if amount > record.reserved_quantity:
            raise InvariantViolationError(
                f"商品 {record.product_id} 释放数量 {amount} 超过已预占数量 {record.reserved_quantity}",
                record.product_id,
            )
        record.reserved_quantity -= amount
        self._stamp(record, actor)

    def decrement_quantity(self, record: StockRecord, amount: int, actor: ActorContext) -> None:
        """销售扣减原语；不变量由调用方在整行提交完成后校验"""
        if amount <= 0:
            raise InvariantViolationError("扣减数量必须大于0", record.product_id)
        record.quantity -= amount
        self._stamp(record, actor)

    def check_invariant(self, record: StockRecord) -> None:
        if record.reserved_quantity < 0:
            raise InvariantViolationError(
                f"商品 {record.product_id} 预占数量为负: {record.reserved_quantity}",
                record.product_id,
            )
        if self.allow_oversell:
            return
        if record.reserved_quantity > record.quantity:
            raise InvariantViolationError(
                f"商品 {record.product_id} 预占数量 {record.reserved_quantity} "
                f"超过在库数量 {record.quantity}",
                record.product_id,
            )

    def _stamp(self, record: StockRecord, actor: ActorContext) -> None:
        record.last_stock_update = datetime.now(timezone.utc)
        record.last_stock_update_by_user_id = actor.user_id

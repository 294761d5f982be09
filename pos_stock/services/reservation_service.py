"""库存预占服务

预占 / 释放 / 提交协议。核心约束：同一商品上“校验可售数量 + 增加预占”
必须是一个原子步骤，两个并发预占不能看到同一个“预占前”的可用数量。
这里通过 StockLedger.unit_of_work（商品锁 + 行级锁 + 单事务）保证。
"""

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pos_stock.core.context import ActorContext
from pos_stock.core.exceptions import (
    InsufficientStockError,
    InvariantViolationError,
    ReservationLostError,
    StockNotFoundError,
)
from pos_stock.models.cart_reservations import CartReservation, HoldStatus
from pos_stock.models.product_stocks import StockRecord
from pos_stock.schemas.catalog import ProductInfo
from pos_stock.services.catalog_service import CatalogService
from pos_stock.services.expiration_service import ExpirationService
from pos_stock.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


class ReservationOutcome(str, enum.Enum):
    RESERVED = "RESERVED"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    EXPIRED_STOCK = "EXPIRED_STOCK"  # 在库足够，但未过期部分不够
    NOT_FOUND = "NOT_FOUND"
    NOT_TRACKED = "NOT_TRACKED"  # 商品不管理库存，无需预占


@dataclass(frozen=True)
class ReservationResult:
    """预占结果；库存不足是正常业务结果，调用方需要显式检查"""

    product_id: int
    requested: int
    outcome: ReservationOutcome
    available_before: Optional[int] = None
    sellable: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.outcome in (ReservationOutcome.RESERVED, ReservationOutcome.NOT_TRACKED)

    def __bool__(self) -> bool:
        return self.success


class ReservationService:
    """库存预占核心服务"""

    def __init__(
        self,
        ledger: StockLedger,
        catalog: CatalogService,
        expirations: ExpirationService,
        lease_minutes: Optional[int] = None,
    ):
        self.ledger = ledger
        self.catalog = catalog
        self.expirations = expirations
        self.lease_minutes = lease_minutes

    @property
    def audit(self):
        return self.ledger.audit

    # ==================== 可售数量 ====================

    async def _expired_quantity(self, product: ProductInfo) -> int:
        if not product.has_expiration_date:
            return 0
        return await self.expirations.get_expired_quantity(product.id)

    async def sellable_ceiling(self, product_id: int, held: int = 0) -> int:
        """可售上限 = 可用库存 - 已过期数量，最小为0

        held 为调用方自己已持有的预占，复核购物车时需要把它算回可售数量中。
        """
        product = await self.catalog.get_product(product_id)
        if product is None:
            raise StockNotFoundError(product_id)
        available = await self.ledger.get_available(product_id)
        expired = await self._expired_quantity(product)
        return max(available + held - expired, 0)

    # ==================== 预占 ====================

    async def reserve(
        self,
        product_id: int,
        quantity: int,
        actor: ActorContext,
        cart_session_id: Optional[str] = None,
    ) -> ReservationResult:
        """预占库存

        可售数量不足时返回失败结果（不抛异常），调用方不应盲目重试。
        """
        if quantity <= 0:
            raise InvariantViolationError("预占数量必须大于0", product_id)

        product = await self.catalog.get_product(product_id)
        if product is None or not product.is_active:
            logger.warning(f"预占失败，商品不存在或已停用: product_id={product_id}")
            return ReservationResult(product_id, quantity, ReservationOutcome.NOT_FOUND)
        if not product.controls_stock:
            return ReservationResult(product_id, quantity, ReservationOutcome.NOT_TRACKED)

        try:
            async with self.ledger.unit_of_work([product_id]) as db:
                record = await self.ledger.load_for_update(db, product_id)
                available = record.available_quantity
                expired = await self._expired_quantity(product)
                sellable = max(available - expired, 0)

                if quantity > sellable:
                    outcome = (
                        ReservationOutcome.EXPIRED_STOCK
                        if quantity <= available
                        else ReservationOutcome.INSUFFICIENT_STOCK
                    )
                    logger.info(
                        f"预占失败: product_id={product_id}, 需要 {quantity}, "
                        f"可用 {available}, 过期 {expired}"
                    )
                    return ReservationResult(
                        product_id, quantity, outcome, available, sellable
                    )

                self.ledger.increase_reserved(record, quantity, actor)
                self.audit.log_reserve(
                    db, product_id, quantity, available, actor, reference=cart_session_id
                )
                if cart_session_id:
                    await self._add_hold(db, cart_session_id, product_id, quantity)
        except StockNotFoundError:
            logger.warning(f"预占失败，商品没有库存记录: product_id={product_id}")
            return ReservationResult(product_id, quantity, ReservationOutcome.NOT_FOUND)

        logger.info(
            f"预占库存成功: cart={cart_session_id}, product_id={product_id}, quantity={quantity}"
        )
        return ReservationResult(
            product_id, quantity, ReservationOutcome.RESERVED, available, sellable
        )

    # ==================== 释放 ====================

    async def release(
        self,
        product_id: int,
        quantity: int,
        actor: ActorContext,
        cart_session_id: Optional[str] = None,
    ) -> bool:
        """释放预占

        释放数量为0时什么也不做；释放超过已预占数量（重复释放）返回 False 并记错误日志。
        不带 cart_session_id 时只能释放没有被任何购物车持有的预占。
        """
        if quantity < 0:
            raise InvariantViolationError("释放数量不能为负数", product_id)
        if quantity == 0:
            return True

        try:
            async with self.ledger.unit_of_work([product_id]) as db:
                record = await self.ledger.load_for_update(db, product_id)
                hold = None
                if cart_session_id:
                    hold = await self._load_hold(db, cart_session_id, product_id)
                    held = self._held(hold)
                    if quantity > held:
                        logger.error(
                            f"释放数量超过购物车持有的预占: cart={cart_session_id}, "
                            f"product_id={product_id}, 释放 {quantity}, 持有 {held}"
                        )
                        return False
                elif quantity > record.reserved_quantity - await self._held_total(db, product_id):
                    # 不带购物车的释放不能动用购物车持有的那部分预占
                    logger.error(
                        f"释放数量超过未被购物车持有的预占: product_id={product_id}, "
                        f"释放 {quantity}, 已预占 {record.reserved_quantity}"
                    )
                    return False
                if quantity > record.reserved_quantity:
                    logger.error(
                        f"释放数量超过已预占数量: product_id={product_id}, "
                        f"释放 {quantity}, 已预占 {record.reserved_quantity}"
                    )
                    return False
                self._release_locked(
                    db, record, hold, quantity, actor, reference=cart_session_id
                )
        except StockNotFoundError:
            logger.warning(f"释放失败，商品没有库存记录: product_id={product_id}")
            return False

        logger.info(
            f"释放库存成功: cart={cart_session_id}, product_id={product_id}, quantity={quantity}"
        )
        return True

    def _release_locked(
        self,
        db: AsyncSession,
        record: StockRecord,
        hold: Optional[CartReservation],
        quantity: int,
        actor: ActorContext,
        reference: Optional[str] = None,
    ) -> None:
        available_before = record.available_quantity
        self.ledger.decrease_reserved(record, quantity, actor)
        self.audit.log_release(
            db, record.product_id, quantity, available_before, actor, reference=reference
        )
        if hold is not None:
            hold.quantity -= quantity
            if hold.quantity == 0:
                hold.status = HoldStatus.RELEASED

    # ==================== 提交 ====================

    async def commit_line(
        self,
        db: AsyncSession,
        product: ProductInfo,
        quantity: int,
        actor: ActorContext,
        cart_session_id: str,
        reference: Optional[str] = None,
    ) -> None:
        """把一行销售的预占转为永久扣减

        必须在 StockLedger.unit_of_work 内调用（已持有该商品的锁）。
        顺序：先扣减在库数量，再释放对应的预占，中间不存在既未预占也未扣减的窗口。
        """
        product_id = product.id
        record = await self.ledger.load_for_update(db, product_id)
        hold = await self._load_hold(db, cart_session_id, product_id)
        held = min(self._held(hold), quantity)

        if held < quantity and not self.ledger.allow_oversell:
            raise ReservationLostError(product_id, cart_session_id, held, quantity)

        # 提交时再次校验可售数量，本购物车自己的预占计入可售
        expired = await self._expired_quantity(product)
        sellable = max(record.available_quantity + held - expired, 0)
        if quantity > sellable and not self.ledger.allow_oversell:
            raise InsufficientStockError(product_id, quantity, sellable)
        if held < quantity:
            logger.warning(
                f"超卖提交: product_id={product_id}, 预占 {held}, 销售 {quantity}"
            )

        previous = record.quantity
        self.ledger.decrement_quantity(record, quantity, actor)
        self.audit.log_sale(db, product_id, quantity, previous, actor, reference=reference)
        if held:
            self._release_locked(db, record, hold, held, actor, reference=reference)
            if hold.quantity == 0:
                hold.status = HoldStatus.COMMITTED
        self.ledger.check_invariant(record)

    # ==================== 购物车持有的预占 ====================

    def _lease_deadline(self) -> Optional[datetime]:
        if not self.lease_minutes:
            return None
        return datetime.now(timezone.utc) + timedelta(minutes=self.lease_minutes)

    @staticmethod
    def _held(hold: Optional[CartReservation]) -> int:
        if hold is None or hold.status is not HoldStatus.RESERVED:
            return 0
        return hold.quantity

    async def _load_hold(
        self, db: AsyncSession, cart_session_id: str, product_id: int
    ) -> Optional[CartReservation]:
        return (
            await db.execute(
                select(CartReservation)
                .where(
                    CartReservation.cart_session_id == cart_session_id,
                    CartReservation.product_id == product_id,
                )
                .with_for_update()
            )
        ).scalar_one_or_none()

    async def _held_total(self, db: AsyncSession, product_id: int) -> int:
        """所有购物车对该商品持有的有效预占之和"""
        return (
            await db.execute(
                select(func.coalesce(func.sum(CartReservation.quantity), 0)).where(
                    CartReservation.product_id == product_id,
                    CartReservation.status == HoldStatus.RESERVED,
                )
            )
        ).scalar_one()

    async def _add_hold(
        self, db: AsyncSession, cart_session_id: str, product_id: int, quantity: int
    ) -> CartReservation:
        hold = await self._load_hold(db, cart_session_id, product_id)
        if hold is None:
            hold = CartReservation(
                cart_session_id=cart_session_id,
                product_id=product_id,
                quantity=quantity,
                status=HoldStatus.RESERVED,
            )
            db.add(hold)
        elif hold.status is HoldStatus.RESERVED:
            hold.quantity += quantity
        else:
            hold.quantity = quantity
            hold.status = HoldStatus.RESERVED
        hold.expired_at = self._lease_deadline()
        return hold

    async def held_quantity(self, cart_session_id: str, product_id: int) -> int:
        async with self.ledger.db_factory() as db:
            hold = (
                await db.execute(
                    select(CartReservation).where(
                        CartReservation.cart_session_id == cart_session_id,
                        CartReservation.product_id == product_id,
                    )
                )
            ).scalar_one_or_none()
        return self._held(hold)

    async def holds_for_session(self, cart_session_id: str) -> Dict[int, int]:
        async with self.ledger.db_factory() as db:
            holds = (
                await db.execute(
                    select(CartReservation).where(
                        CartReservation.cart_session_id == cart_session_id,
                        CartReservation.status == HoldStatus.RESERVED,
                    )
                )
            ).scalars().all()
        return {hold.product_id: hold.quantity for hold in holds}

    async def release_session(self, cart_session_id: str, actor: ActorContext) -> int:
        """释放某个收银会话持有的全部预占，返回释放的记录数"""
        released = 0
        for product_id, quantity in (await self.holds_for_session(cart_session_id)).items():
            if await self.release(product_id, quantity, actor, cart_session_id=cart_session_id):
                released += 1
        return released

    async def expire_session(self, cart_session_id: str) -> int:
        """把会话持有的预占标记为立即过期，交给清理任务回收"""
        async with self.ledger.db_factory() as db:
            async with db.begin():
                result = await db.execute(
                    update(CartReservation)
                    .where(
                        CartReservation.cart_session_id == cart_session_id,
                        CartReservation.status == HoldStatus.RESERVED,
                    )
                    .values(expired_at=datetime.now(timezone.utc))
                )
        logger.warning(f"购物车预占已标记过期等待回收: cart={cart_session_id}, 记录数={result.rowcount}")
        return result.rowcount

    # ==================== 过期清理 ====================

    async def cleanup_expired_reservations(self, batch_size: int = 500) -> int:
        """清理过期的预占记录

        Args:
            batch_size: 批处理大小，默认500条

        Returns:
            清理的记录数量
        """
        total_cleaned = 0
        failed_ids: List[int] = []
        actor = ActorContext.system("cleanup_job")

        while True:
            async with self.ledger.db_factory() as db:
                stmt = (
                    select(CartReservation)
                    .where(
                        CartReservation.status == HoldStatus.RESERVED,
                        CartReservation.expired_at.is_not(None),
                        CartReservation.expired_at <= datetime.now(timezone.utc),
                    )
                    .order_by(CartReservation.id)
                    .limit(batch_size)
                )
                if failed_ids:
                    stmt = stmt.where(CartReservation.id.not_in(failed_ids))
                expired_holds = (await db.execute(stmt)).scalars().all()

            if not expired_holds:
                break

            logger.info(f"本次清理 {len(expired_holds)} 条过期预占记录")

            for hold in expired_holds:
                try:
                    if await self._release_expired_hold(hold.id, hold.product_id, actor):
                        total_cleaned += 1
                except Exception as e:
                    logger.error(
                        f"清理单条预占记录失败: cart={hold.cart_session_id}, "
                        f"product_id={hold.product_id}, error={str(e)}"
                    )
                    failed_ids.append(hold.id)

            # 如果本次清理少于批处理大小，说明已经清理完所有过期记录
            if len(expired_holds) < batch_size:
                break

        logger.info(f"清理任务完成，总共清理 {total_cleaned} 条过期预占记录")
        return total_cleaned

    async def _release_expired_hold(self, hold_id: int, product_id: int, actor: ActorContext) -> bool:
        async with self.ledger.unit_of_work([product_id]) as db:
            hold = (
                await db.execute(
                    select(CartReservation)
                    .where(
                        CartReservation.id == hold_id,
                        CartReservation.status == HoldStatus.RESERVED,
                        CartReservation.expired_at.is_not(None),
                        CartReservation.expired_at <= datetime.now(timezone.utc),
                    )
                    .with_for_update()
                )
            ).scalar_one_or_none()
            # 加锁后重新确认：可能已被收银流程提交、释放，或加购续租
            if hold is None:
                logger.info(f"预占已提交、释放或续租，跳过清理: hold_id={hold_id}")
                return False
            record = await self.ledger.load_for_update(db, product_id)
            self._release_locked(
                db, record, hold, hold.quantity, actor, reference=hold.cart_session_id
            )
        return True

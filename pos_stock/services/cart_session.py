"""收银会话（购物车）

每个收银终端持有一个 CartSession：暂存商品行、每行已持有的预占、付款和客户。
加购时预占，减少 / 删除行时释放，放弃会话时释放全部预占（补偿操作，
失败会重试并记录，绝不静默丢弃）。
"""

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional

from pos_stock.core.context import ActorContext
from pos_stock.core.exceptions import (
    CartNotFoundError,
    CartStateError,
    InvariantViolationError,
    ReleaseFailedError,
)
from pos_stock.schemas.catalog import ProductInfo
from pos_stock.services.reservation_service import (
    ReservationOutcome,
    ReservationResult,
    ReservationService,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class CartState(str, enum.Enum):
    BUILDING = "BUILDING"
    VALIDATING = "VALIDATING"
    COMMITTING = "COMMITTING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


@dataclass
class CartLine:
    product: ProductInfo
    quantity: int
    unit_price: Decimal
    discount: Decimal = Decimal("0")
    # 本行在账本中持有的预占数量；不管理库存的商品为0
    reserved: int = 0

    @property
    def product_id(self) -> int:
        return self.product.id

    @property
    def base_amount(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def discount_percentage(self) -> Decimal:
        if self.base_amount <= 0:
            return Decimal("0")
        return (self.discount / self.base_amount * 100).quantize(
            Decimal("0.0001"), rounding=ROUND_HALF_UP
        )


@dataclass
class PaymentEntry:
    payment_type_id: int
    amount: Decimal
    reference: Optional[str] = None
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


@dataclass(frozen=True)
class CartTotals:
    sub_total: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    paid_amount: Decimal
    change_due: Decimal
    remaining: Decimal


class CartSession:
    """单个收银会话，只被所属收银员使用，不跨会话共享"""

    def __init__(
        self,
        reservations: ReservationService,
        session_id: Optional[str] = None,
        tax_rate: Decimal = Decimal("0"),
        release_retry_attempts: int = 3,
        release_scheduler: Optional[Callable[[str], None]] = None,
    ):
        self.reservations = reservations
        self.session_id = session_id or uuid.uuid4().hex
        self.tax_rate = Decimal(tax_rate)
        self.release_retry_attempts = max(release_retry_attempts, 1)
        self.release_scheduler = release_scheduler

        self.state = CartState.BUILDING
        self.lines: Dict[int, CartLine] = {}
        self.payments: List[PaymentEntry] = []
        self.person_id: Optional[int] = None
        self.notes: Optional[str] = None
        # 同一会话上的操作串行执行（加购、结算、放弃不能交错）
        self.lock = asyncio.Lock()

    def require_state(self, *states: CartState) -> None:
        if self.state not in states:
            raise CartStateError(f"收银会话当前状态 {self.state.value} 不允许该操作")

    def _line(self, product_id: int) -> CartLine:
        line = self.lines.get(product_id)
        if line is None:
            raise CartStateError(f"购物车中没有商品 {product_id}")
        return line

    # ==================== 商品行 ====================

    async def add_product(
        self, product_id: int, quantity: int, actor: ActorContext
    ) -> ReservationResult:
        """加购；同一商品合并到已有行，预占只针对新增的数量"""
        if quantity <= 0:
            raise InvariantViolationError("加购数量必须大于0", product_id)

        async with self.lock:
            self.require_state(CartState.BUILDING)
            line = self.lines.get(product_id)
            if line is not None:
                await self._sync_reserved(line)
            result = await self.reservations.reserve(
                product_id, quantity, actor, cart_session_id=self.session_id
            )
            if not result:
                logger.info(
                    f"加购失败: cart={self.session_id}, product_id={product_id}, "
                    f"原因={result.outcome.value}"
                )
                return result

            if line is None:
                product = await self.reservations.catalog.get_product(product_id)
                if product is None:
                    # 预占后商品被删除，退回刚拿到的预占
                    if result.outcome is ReservationOutcome.RESERVED:
                        await self._release_hold(product_id, quantity, actor)
                    logger.warning(
                        f"加购失败，商品已被删除: cart={self.session_id}, product_id={product_id}"
                    )
                    return ReservationResult(product_id, quantity, ReservationOutcome.NOT_FOUND)
                line = CartLine(product=product, quantity=0, unit_price=product.sale_price)
                self.lines[product_id] = line
            line.quantity += quantity
            if result.outcome is ReservationOutcome.RESERVED:
                line.reserved += quantity
                await self._reclaim_lost(line, actor)
            return result

    async def increase_quantity(self, product_id: int, actor: ActorContext) -> ReservationResult:
        self._line(product_id)
        return await self.add_product(product_id, 1, actor)

    async def decrease_quantity(
        self, product_id: int, actor: ActorContext, quantity: int = 1
    ) -> Optional[CartLine]:
        """减少数量并释放对应预占；减到0时删除该行，返回 None"""
        if quantity <= 0:
            raise InvariantViolationError("减少数量必须大于0", product_id)

        async with self.lock:
            self.require_state(CartState.BUILDING)
            line = self._line(product_id)
            if quantity >= line.quantity:
                await self._release_line(line, line.reserved, actor)
                del self.lines[product_id]
                return None

            # 先去掉没有预占的那部分数量
            await self._sync_reserved(line)
            to_release = max(line.reserved - (line.quantity - quantity), 0)
            await self._release_line(line, to_release, actor)
            line.quantity -= quantity
            # 折扣不能超过调整后的行金额
            line.discount = min(line.discount, line.base_amount)
            return line

    async def remove_line(self, product_id: int, actor: ActorContext) -> None:
        async with self.lock:
            self.require_state(CartState.BUILDING)
            line = self._line(product_id)
            await self._release_line(line, line.reserved, actor)
            del self.lines[product_id]

    async def _release_line(self, line: CartLine, quantity: int, actor: ActorContext) -> None:
        if quantity <= 0:
            return
        await self._sync_reserved(line)
        quantity = min(quantity, line.reserved)
        if quantity <= 0:
            return
        await self._release_hold(line.product_id, quantity, actor)
        line.reserved -= quantity

    async def _release_hold(self, product_id: int, quantity: int, actor: ActorContext) -> None:
        released = await self.reservations.release(
            product_id, quantity, actor, cart_session_id=self.session_id
        )
        if not released:
            raise ReleaseFailedError(f"释放商品 {product_id} 的预占失败", [product_id])

    async def _sync_reserved(self, line: CartLine) -> None:
        """租期到期被清理任务回收后，行上记录的预占以账本为准"""
        held = await self.reservations.held_quantity(self.session_id, line.product_id)
        if held < line.reserved:
            logger.warning(
                f"购物车预占已被回收: cart={self.session_id}, product_id={line.product_id}, "
                f"记录 {line.reserved}, 实际持有 {held}"
            )
            line.reserved = held

    async def _reclaim_lost(self, line: CartLine, actor: ActorContext) -> None:
        """重新预占被回收的部分，库存不足时保持缺口，结算时会被拒绝"""
        missing = line.quantity - line.reserved
        if missing <= 0:
            return
        result = await self.reservations.reserve(
            line.product_id, missing, actor, cart_session_id=self.session_id
        )
        if result.outcome is ReservationOutcome.RESERVED:
            line.reserved += missing
        else:
            logger.warning(
                f"被回收的预占未能补回: cart={self.session_id}, product_id={line.product_id}, "
                f"缺少 {missing}, 原因={result.outcome.value}"
            )

    def set_discount(self, product_id: int, amount: Decimal) -> CartLine:
        """设置行折扣金额（0 到行金额之间）"""
        self.require_state(CartState.BUILDING)
        line = self._line(product_id)
        amount = Decimal(amount)
        if amount < 0 or amount > line.base_amount:
            raise InvariantViolationError(
                f"折扣金额 {amount} 超出范围 0 ~ {line.base_amount}", product_id
            )
        line.discount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
        return line

    # ==================== 客户与付款 ====================

    def set_customer(self, person_id: Optional[int]) -> None:
        self.require_state(CartState.BUILDING)
        self.person_id = person_id

    def add_payment(
        self, payment_type_id: int, amount: Decimal, reference: Optional[str] = None
    ) -> PaymentEntry:
        self.require_state(CartState.BUILDING)
        amount = Decimal(amount)
        if amount <= 0:
            raise InvariantViolationError("付款金额必须大于0")
        entry = PaymentEntry(
            payment_type_id=payment_type_id,
            amount=amount.quantize(CENT, rounding=ROUND_HALF_UP),
            reference=reference,
        )
        self.payments.append(entry)
        return entry

    def remove_payment(self, entry_id: str) -> None:
        self.require_state(CartState.BUILDING)
        for index, entry in enumerate(self.payments):
            if entry.entry_id == entry_id:
                del self.payments[index]
                return
        raise CartStateError(f"付款记录 {entry_id} 不存在")

    # ==================== 金额 ====================

    def totals(self) -> CartTotals:
        sub_total = sum((line.base_amount for line in self.lines.values()), Decimal("0"))
        discount = sum((line.discount for line in self.lines.values()), Decimal("0"))
        taxable = max(sub_total - discount, Decimal("0"))
        tax = (taxable * self.tax_rate / 100).quantize(CENT, rounding=ROUND_HALF_UP)
        total = taxable + tax
        paid = sum((entry.amount for entry in self.payments), Decimal("0"))
        return CartTotals(
            sub_total=sub_total,
            discount_amount=discount,
            taxable_amount=taxable,
            tax_amount=tax,
            total=total,
            paid_amount=paid,
            change_due=max(paid - total, Decimal("0")),
            remaining=max(total - paid, Decimal("0")),
        )

    # ==================== 生命周期 ====================

    def complete(self) -> None:
        self.state = CartState.COMPLETED
        self.lines.clear()
        self.payments.clear()

    async def abandon(self, actor: ActorContext) -> None:
        """放弃会话，释放本会话持有的全部预占

        单行释放失败会重试；仍失败时把本会话的预占标记为已过期，交给清理任务回收，
        并投递一次后台释放任务。连标记都失败时抛出 ReleaseFailedError，
        会话保持原样，调用方可以再次放弃。
        """
        async with self.lock:
            if self.state is CartState.ABORTED:
                return
            self.require_state(CartState.BUILDING)

            failed: List[int] = []
            for line in list(self.lines.values()):
                if line.reserved and not await self._release_with_retry(line, actor):
                    failed.append(line.product_id)

            if failed:
                try:
                    await self.reservations.expire_session(self.session_id)
                except Exception as e:
                    logger.error(
                        f"放弃会话时释放预占失败且无法转交清理任务: cart={self.session_id}, "
                        f"products={failed}, error={str(e)}"
                    )
                    raise ReleaseFailedError(
                        f"收银会话 {self.session_id} 的预占释放失败", failed
                    ) from e
                logger.error(
                    f"放弃会话时释放预占失败，已转交清理任务: cart={self.session_id}, products={failed}"
                )
                if self.release_scheduler:
                    self.release_scheduler(self.session_id)

            self.state = CartState.ABORTED
            self.lines.clear()
            self.payments.clear()
            logger.info(f"收银会话已放弃: cart={self.session_id}")

    async def _release_with_retry(self, line: CartLine, actor: ActorContext) -> bool:
        for attempt in range(1, self.release_retry_attempts + 1):
            try:
                released = await self.reservations.release(
                    line.product_id, line.reserved, actor, cart_session_id=self.session_id
                )
            except Exception as e:
                logger.warning(
                    f"释放预占失败，第 {attempt} 次: cart={self.session_id}, "
                    f"product_id={line.product_id}, error={str(e)}"
                )
                continue
            if released:
                line.reserved = 0
                return True
            # 账本拒绝释放（数量对不上），重试没有意义
            logger.error(
                f"账本拒绝释放预占: cart={self.session_id}, product_id={line.product_id}, "
                f"数量={line.reserved}"
            )
            return False
        return False


class CartSessionRegistry:
    """当前进程内活跃的收银会话"""

    def __init__(self, factory: Callable[[], CartSession]):
        self.factory = factory
        self._sessions: Dict[str, CartSession] = {}

    def open(self) -> CartSession:
        cart = self.factory()
        self._sessions[cart.session_id] = cart
        logger.info(f"打开收银会话: cart={cart.session_id}")
        return cart

    def get(self, session_id: str) -> CartSession:
        cart = self._sessions.get(session_id)
        if cart is None:
            raise CartNotFoundError(session_id)
        return cart

    def discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

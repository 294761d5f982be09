"""销售结算编排

把一个收银会话变成一笔已提交的销售：

1. 复核：购物车非空、客户、付款足额，逐行重新读取商品并复核预占与可售数量
2. 分配发票号（发号服务不可用时退回时间戳编号，收银不被阻塞）
3-6. 在同一个事务内写入发票头、发票行、付款，并对每行“先扣减库存再释放预占”，
     该事务持有本单所有管理库存商品的锁（按商品ID升序），任何一步失败整体回滚
7. 打印小票（失败不回滚销售，只在结果中报告）
8. 会话进入 COMPLETED 并清空

复核失败时不会写入任何记录，购物车持有的预占保持不变，会话回到 BUILDING。
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from pos_stock.core.context import ActorContext
from pos_stock.core.exceptions import (
    EmptyCartError,
    InvoiceNumberUnavailableError,
    SaleCommitError,
    SaleValidationError,
    UnderpaidSaleError,
)
from pos_stock.models.invoices import Invoice, InvoiceLine, InvoiceStatus, Payment
from pos_stock.schemas.catalog import ProductInfo
from pos_stock.schemas.sale import InvoiceSnapshot, SaleResult
from pos_stock.services.cart_session import CartSession, CartState, CartTotals
from pos_stock.services.invoice_numbering import InvoiceNumberService
from pos_stock.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)


class SaleFinalizationOrchestrator:

    def __init__(
        self,
        reservations: ReservationService,
        numbering: Optional[InvoiceNumberService],
        printer,
        allow_anonymous: bool = True,
    ):
        self.reservations = reservations
        self.ledger = reservations.ledger
        self.catalog = reservations.catalog
        self.numbering = numbering
        self.printer = printer
        self.allow_anonymous = allow_anonymous

    async def finalize(self, cart: CartSession, actor: ActorContext) -> SaleResult:
        async with cart.lock:
            cart.require_state(CartState.BUILDING)
            cart.state = CartState.VALIDATING
            try:
                totals = cart.totals()
                products = await self._validate(cart, totals)
                invoice_number = await self._allocate_number(cart)
                cart.state = CartState.COMMITTING
                snapshot = await self._commit(cart, products, totals, invoice_number, actor)
            except Exception:
                # 未提交任何数据，预占仍由购物车持有
                cart.state = CartState.BUILDING
                raise

            printed, print_error = await self._print(snapshot)
            cart.complete()

        logger.info(
            f"销售完成: invoice={snapshot.invoice_number}, cart={cart.session_id}, "
            f"total={snapshot.total}"
        )
        return SaleResult(
            invoice=snapshot,
            change_due=totals.change_due,
            printed=printed,
            print_error=print_error,
        )

    # ==================== 1. 复核 ====================

    async def _validate(self, cart: CartSession, totals: CartTotals) -> Dict[int, ProductInfo]:
        if not cart.lines:
            raise EmptyCartError("购物车为空，无法结算")
        if cart.person_id is None and not self.allow_anonymous:
            raise SaleValidationError("请先选择客户")
        if totals.paid_amount < totals.total:
            raise UnderpaidSaleError(
                f"付款不足: 应付 {totals.total}, 已付 {totals.paid_amount}"
            )

        products: Dict[int, ProductInfo] = {}
        for line in cart.lines.values():
            product_id = line.product_id
            product = await self.catalog.get_product(product_id)
            if product is None or not product.is_active:
                raise SaleValidationError(f"商品 {line.product.name} 不存在或已停用", product_id)

            if product.controls_stock:
                held = await self.reservations.held_quantity(cart.session_id, product_id)
                if held != line.quantity:
                    raise SaleValidationError(
                        f"商品 {product.name} 的预占已失效: 持有 {held}, 需要 {line.quantity}",
                        product_id,
                    )
                if product.has_expiration_date:
                    ceiling = await self.reservations.sellable_ceiling(product_id, held=held)
                    if line.quantity > ceiling:
                        raise SaleValidationError(
                            f"商品 {product.name} 未过期库存不足: 需要 {line.quantity}, 可售 {ceiling}",
                            product_id,
                        )
            products[product_id] = product
        return products

    # ==================== 2. 发票号 ====================

    async def _allocate_number(self, cart: CartSession) -> str:
        if self.numbering is not None:
            try:
                return await self.numbering.generate_next_number()
            except InvoiceNumberUnavailableError:
                pass
        fallback = f"INV-{datetime.now():%Y%m%d%H%M%S}-{cart.session_id[:8]}"
        logger.warning(f"发票号服务不可用，使用备用编号: {fallback}")
        return fallback

    # ==================== 3-6. 原子提交 ====================

    async def _commit(
        self,
        cart: CartSession,
        products: Dict[int, ProductInfo],
        totals: CartTotals,
        invoice_number: str,
        actor: ActorContext,
    ) -> InvoiceSnapshot:
        now = datetime.now(timezone.utc)
        stock_ids = [pid for pid, product in products.items() if product.controls_stock]

        try:
            async with self.ledger.unit_of_work(stock_ids) as db:
                invoice = Invoice(
                    invoice_number=invoice_number,
                    cart_session_id=cart.session_id,
                    status=InvoiceStatus.PAID,
                    person_id=cart.person_id,
                    user_id=actor.user_id,
                    sub_total=totals.sub_total,
                    discount_amount=totals.discount_amount,
                    tax_amount=totals.tax_amount,
                    total=totals.total,
                    paid_amount=totals.paid_amount,
                    notes=cart.notes,
                    issued_at=now,
                    lines=[
                        InvoiceLine(
                            product_id=line.product_id,
                            quantity=line.quantity,
                            unit_price=line.unit_price,
                            discount_percentage=line.discount_percentage,
                            tax_rate=cart.tax_rate,
                        )
                        for line in cart.lines.values()
                    ],
                    payments=[
                        Payment(
                            payment_type_id=entry.payment_type_id,
                            amount=entry.amount,
                            reference=entry.reference,
                            is_confirmed=True,
                            paid_at=now,
                        )
                        for entry in cart.payments
                    ],
                )
                db.add(invoice)
                await db.flush()

                for line in cart.lines.values():
                    product = products[line.product_id]
                    if not product.controls_stock:
                        continue
                    await self.reservations.commit_line(
                        db,
                        product,
                        line.quantity,
                        actor,
                        cart_session_id=cart.session_id,
                        reference=invoice_number,
                    )
                await db.flush()
                snapshot = InvoiceSnapshot.model_validate(invoice)
        except SQLAlchemyError as e:
            logger.error(f"销售提交失败，已回滚: cart={cart.session_id}, error={str(e)}")
            raise SaleCommitError(f"销售提交失败，已回滚: {str(e)}") from e

        return snapshot

    # ==================== 7. 小票 ====================

    async def _print(self, snapshot: InvoiceSnapshot) -> Tuple[bool, Optional[str]]:
        if self.printer is None:
            return False, "未配置小票打印"
        try:
            await self.printer.print_receipt(snapshot)
        except Exception as e:
            logger.error(f"小票打印失败: invoice={snapshot.invoice_number}, error={str(e)}")
            return False, str(e)
        return True, None

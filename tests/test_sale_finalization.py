"""销售结算编排测试"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from pos_stock.core.context import ActorContext
from pos_stock.core.exceptions import (
    EmptyCartError,
    InvoiceNumberUnavailableError,
    SaleCommitError,
    SaleValidationError,
    UnderpaidSaleError,
)
from pos_stock.models import HoldStatus, InvoiceStatus
from pos_stock.models.stock_movements import MovementType
from pos_stock.services.cart_session import CartState
from pos_stock.services.sale_finalization import SaleFinalizationOrchestrator

pytestmark = pytest.mark.anyio


class TestFinalizeSuccess:
    """结算成功测试类"""

    async def test_simple_sale(
        self, orchestrator, cart_factory, ledger, product_factory, actor, fetch_movements, fetch_invoices
    ):
        """测试在库10件，加购3件并足额付款后结算"""
        product_id = await product_factory(quantity=10, price="4.00")
        cart = cart_factory()
        assert await cart.add_product(product_id, 3, actor)
        record = await ledger.get_record(product_id)
        assert (record.reserved_quantity, record.available_quantity) == (3, 7)
        cart.add_payment(1, Decimal("20.00"))

        result = await orchestrator.finalize(cart, actor)

        record = await ledger.get_record(product_id)
        assert record.quantity == 7
        assert record.reserved_quantity == 0
        assert result.invoice.invoice_number == "FT-00001"
        assert result.invoice.status is InvoiceStatus.PAID
        assert result.invoice.total == Decimal("12.00")
        assert result.change_due == Decimal("8.00")
        assert result.printed is True
        assert [line.quantity for line in result.invoice.lines] == [3]
        assert len(result.invoice.payments) == 1

        movements = await fetch_movements(product_id)
        sale_entries = [m for m in movements if m.movement_type is MovementType.SALE]
        release_entries = [m for m in movements if m.movement_type is MovementType.RELEASE]
        assert len(sale_entries) == 1
        assert len(release_entries) == 1
        assert (sale_entries[0].previous_quantity, sale_entries[0].new_quantity) == (10, 7)
        assert sale_entries[0].reference == "FT-00001"

        invoices = await fetch_invoices()
        assert len(invoices) == 1
        assert invoices[0].cart_session_id == cart.session_id
        assert invoices[0].user_id == actor.user_id
        assert cart.state is CartState.COMPLETED
        assert cart.lines == {}

    async def test_hold_marked_committed(self, orchestrator, cart_factory, product_factory, actor, fetch_holds):
        product_id = await product_factory(quantity=10)
        cart = cart_factory()
        await cart.add_product(product_id, 2, actor)
        cart.add_payment(1, Decimal("20.00"))

        await orchestrator.finalize(cart, actor)

        hold = (await fetch_holds(cart.session_id))[0]
        assert hold.status is HoldStatus.COMMITTED
        assert hold.quantity == 0

    async def test_untracked_product_sold_without_decrement(
        self, orchestrator, cart_factory, ledger, product_factory, actor, fetch_movements
    ):
        tracked = await product_factory(quantity=5, price="1.00")
        service_item = await product_factory(quantity=0, price="9.00", controls_stock=False)
        cart = cart_factory()
        await cart.add_product(tracked, 1, actor)
        await cart.add_product(service_item, 2, actor)
        cart.add_payment(1, Decimal("19.00"))

        result = await orchestrator.finalize(cart, actor)

        assert result.invoice.total == Decimal("19.00")
        assert (await ledger.get_record(tracked)).quantity == 4
        assert (await ledger.get_record(service_item)).quantity == 0
        assert len(await fetch_movements(service_item)) == 1

    async def test_line_discount_and_tax_persisted(self, orchestrator, cart_factory, product_factory, actor):
        product_id = await product_factory(quantity=5, price="10.00")
        cart = cart_factory(tax_rate=Decimal("10"))
        await cart.add_product(product_id, 2, actor)
        cart.set_discount(product_id, Decimal("5.00"))
        cart.add_payment(1, Decimal("16.50"))

        result = await orchestrator.finalize(cart, actor)

        assert result.invoice.sub_total == Decimal("20.00")
        assert result.invoice.discount_amount == Decimal("5.00")
        assert result.invoice.tax_amount == Decimal("1.50")
        assert result.invoice.total == Decimal("16.50")
        assert result.invoice.lines[0].discount_percentage == Decimal("25.0000")
        assert result.change_due == Decimal("0")


class TestFinalizeValidation:
    """结算复核失败测试类"""

    async def test_validation_failure_leaves_no_records(
        self, orchestrator, cart_factory, ledger, product_factory, add_lot, actor, fetch_invoices, fetch_holds
    ):
        """测试复核失败时不写入任何销售记录，预占保持不变"""
        fresh = await product_factory(quantity=10)
        perishable = await product_factory(quantity=3, has_expiration_date=True)
        await add_lot(perishable, 3, days=10)
        cart = cart_factory()
        await cart.add_product(fresh, 2, actor)
        await cart.add_product(perishable, 3, actor)
        cart.add_payment(1, Decimal("100"))
        # 加购之后批次过期
        await add_lot(perishable, 3, days=-1)

        with pytest.raises(SaleValidationError) as exc_info:
            await orchestrator.finalize(cart, actor)

        assert exc_info.value.product_id == perishable
        assert await fetch_invoices() == []
        assert (await ledger.get_record(fresh)).reserved_quantity == 2
        assert (await ledger.get_record(perishable)).reserved_quantity == 3
        assert all(h.status is HoldStatus.RESERVED for h in await fetch_holds(cart.session_id))
        assert cart.state is CartState.BUILDING
        assert len(cart.lines) == 2

    async def test_empty_cart(self, orchestrator, cart_factory, actor):
        with pytest.raises(EmptyCartError):
            await orchestrator.finalize(cart_factory(), actor)

    async def test_underpaid(self, orchestrator, cart_factory, product_factory, actor, fetch_invoices):
        product_id = await product_factory(quantity=10, price="10.00")
        cart = cart_factory()
        await cart.add_product(product_id, 1, actor)
        cart.add_payment(1, Decimal("9.99"))

        with pytest.raises(UnderpaidSaleError):
            await orchestrator.finalize(cart, actor)
        assert await fetch_invoices() == []

    async def test_customer_required(self, reservations, mock_numbering, mock_printer, cart_factory, product_factory, actor):
        orchestrator = SaleFinalizationOrchestrator(
            reservations, mock_numbering, mock_printer, allow_anonymous=False
        )
        product_id = await product_factory(quantity=10, price="1.00")
        cart = cart_factory()
        await cart.add_product(product_id, 1, actor)
        cart.add_payment(1, Decimal("1.00"))

        with pytest.raises(SaleValidationError):
            await orchestrator.finalize(cart, actor)

        cart.set_customer(55)
        result = await orchestrator.finalize(cart, actor)
        assert result.invoice.person_id == 55

    async def test_deactivated_product(self, orchestrator, cart_factory, product_factory, db_factory, actor):
        from pos_stock.models import Product

        product_id = await product_factory(quantity=10, price="1.00")
        cart = cart_factory()
        await cart.add_product(product_id, 1, actor)
        cart.add_payment(1, Decimal("1.00"))
        async with db_factory() as db:
            async with db.begin():
                (await db.get(Product, product_id)).is_active = False

        with pytest.raises(SaleValidationError) as exc_info:
            await orchestrator.finalize(cart, actor)
        assert exc_info.value.product_id == product_id

    async def test_lost_reservation_detected(self, orchestrator, cart_factory, reservations, product_factory, actor):
        """测试预占被清理任务回收后结算失败"""
        product_id = await product_factory(quantity=10, price="1.00")
        cart = cart_factory()
        await cart.add_product(product_id, 2, actor)
        cart.add_payment(1, Decimal("2.00"))
        await reservations.release_session(cart.session_id, ActorContext.system("cleanup_job"))

        with pytest.raises(SaleValidationError):
            await orchestrator.finalize(cart, actor)

    async def test_completed_cart_cannot_finalize_again(self, orchestrator, cart_factory, product_factory, actor):
        from pos_stock.core.exceptions import CartStateError

        product_id = await product_factory(quantity=10, price="1.00")
        cart = cart_factory()
        await cart.add_product(product_id, 1, actor)
        cart.add_payment(1, Decimal("1.00"))
        await orchestrator.finalize(cart, actor)

        with pytest.raises(CartStateError):
            await orchestrator.finalize(cart, actor)


class TestFinalizeFailures:
    """提交与副作用失败测试类"""

    async def test_commit_failure_rolls_back_everything(
        self, orchestrator, mock_numbering, cart_factory, ledger, product_factory, actor, fetch_invoices, fetch_movements
    ):
        """测试发票号冲突导致提交失败时整体回滚"""
        first = await product_factory(quantity=10, price="1.00")
        earlier = cart_factory()
        await earlier.add_product(first, 1, actor)
        earlier.add_payment(1, Decimal("1.00"))
        await orchestrator.finalize(earlier, actor)

        cart = cart_factory()
        await cart.add_product(first, 2, actor)
        cart.add_payment(1, Decimal("2.00"))
        # 发号服务返回了重复的号码
        mock_numbering.generate_next_number.return_value = "FT-00001"

        with pytest.raises(SaleCommitError):
            await orchestrator.finalize(cart, actor)

        assert len(await fetch_invoices()) == 1
        record = await ledger.get_record(first)
        assert record.quantity == 9
        assert record.reserved_quantity == 2
        assert len([m for m in await fetch_movements(first) if m.movement_type is MovementType.SALE]) == 1
        assert cart.state is CartState.BUILDING

    async def test_print_failure_is_not_fatal(self, orchestrator, mock_printer, cart_factory, ledger, product_factory, actor):
        product_id = await product_factory(quantity=10, price="1.00")
        cart = cart_factory()
        await cart.add_product(product_id, 1, actor)
        cart.add_payment(1, Decimal("1.00"))
        mock_printer.print_receipt.side_effect = RuntimeError("打印机缺纸")

        result = await orchestrator.finalize(cart, actor)

        assert result.printed is False
        assert result.print_error == "打印机缺纸"
        assert (await ledger.get_record(product_id)).quantity == 9
        assert cart.state is CartState.COMPLETED

    async def test_numbering_fallback(self, orchestrator, mock_numbering, cart_factory, product_factory, actor):
        """测试发号服务不可用时使用时间戳编号"""
        product_id = await product_factory(quantity=10, price="1.00")
        cart = cart_factory()
        await cart.add_product(product_id, 1, actor)
        cart.add_payment(1, Decimal("1.00"))
        mock_numbering.generate_next_number.side_effect = InvoiceNumberUnavailableError("发票号服务不可用")

        result = await orchestrator.finalize(cart, actor)

        number = result.invoice.invoice_number
        assert number.startswith("INV-")
        assert number.endswith(cart.session_id[:8])

    async def test_same_cart_session_committed_once(
        self, orchestrator, cart_factory, product_factory, actor, fetch_invoices
    ):
        """测试同一收银会话ID不能重复成交"""
        product_id = await product_factory(quantity=10, price="1.00")
        first = cart_factory(session_id="terminal-1-0001")
        await first.add_product(product_id, 1, actor)
        first.add_payment(1, Decimal("1.00"))
        await orchestrator.finalize(first, actor)

        replay = cart_factory(session_id="terminal-1-0001")
        await replay.add_product(product_id, 1, actor)
        replay.add_payment(1, Decimal("1.00"))
        orchestrator.numbering.generate_next_number = AsyncMock(return_value="FT-00002")

        with pytest.raises(SaleCommitError):
            await orchestrator.finalize(replay, actor)
        assert len(await fetch_invoices()) == 1

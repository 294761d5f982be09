"""发票号与小票输出测试"""
import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from pos_stock.core.exceptions import InvoiceNumberUnavailableError
from pos_stock.models.invoices import InvoiceStatus
from pos_stock.schemas.sale import InvoiceSnapshot
from pos_stock.services.invoice_numbering import InvoiceNumberService
from pos_stock.services.receipt_printer import CeleryReceiptPrinter, LoggingReceiptPrinter

pytestmark = pytest.mark.anyio


@pytest.fixture
def snapshot():
    return InvoiceSnapshot(
        id=3,
        invoice_number="FT-00003",
        cart_session_id="cart-1",
        status=InvoiceStatus.PAID,
        sub_total=Decimal("9.00"),
        discount_amount=Decimal("0"),
        tax_amount=Decimal("0"),
        total=Decimal("9.00"),
        paid_amount=Decimal("10.00"),
        issued_at=datetime.now(timezone.utc),
    )


class TestInvoiceNumbering:
    """发票号服务测试类"""

    async def test_format(self):
        redis_mock = Mock()
        redis_mock.incr = AsyncMock(return_value=42)
        service = InvoiceNumberService(redis_mock, prefix="FT")

        assert await service.generate_next_number() == "FT-00042"
        redis_mock.incr.assert_awaited_once_with("invoice:sequence:FT")

    async def test_redis_error(self):
        redis_mock = Mock()
        redis_mock.incr = AsyncMock(side_effect=RedisConnectionError("连接失败"))
        service = InvoiceNumberService(redis_mock)

        with pytest.raises(InvoiceNumberUnavailableError):
            await service.generate_next_number()

    async def test_timeout(self):
        """测试 Redis 无响应时按超时处理"""

        async def hang(key):
            await asyncio.sleep(10)

        redis_mock = Mock()
        redis_mock.incr = hang
        service = InvoiceNumberService(redis_mock, timeout=0.01)

        with pytest.raises(InvoiceNumberUnavailableError):
            await service.generate_next_number()


class TestReceiptPrinters:
    """小票输出测试类"""

    async def test_logging_printer(self, snapshot, caplog):
        caplog.set_level("INFO", logger="pos_stock.services.receipt_printer")

        await LoggingReceiptPrinter().print_receipt(snapshot)

        assert "FT-00003" in caplog.text

    async def test_celery_printer_sends_task(self, snapshot):
        celery_mock = Mock()

        await CeleryReceiptPrinter(celery_mock).print_receipt(snapshot)

        celery_mock.send_task.assert_called_once()
        args, kwargs = celery_mock.send_task.call_args
        assert args[0] == "tasks.receipt.print_receipt"
        assert kwargs["args"][0]["invoice_number"] == "FT-00003"
        assert kwargs["args"][0]["total"] == "9.00"

    async def test_celery_printer_propagates_broker_error(self, snapshot):
        """投递失败由结算流程记录为打印失败"""
        celery_mock = Mock()
        celery_mock.send_task.side_effect = ConnectionError("broker down")

        with pytest.raises(ConnectionError):
            await CeleryReceiptPrinter(celery_mock).print_receipt(snapshot)

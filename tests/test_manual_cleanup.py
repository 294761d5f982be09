"""手动清理脚本测试"""
import pytest
from unittest.mock import AsyncMock, patch

from pos_stock.jobs.manual_cleanup import main, run_cleanup

pytestmark = pytest.mark.anyio


class TestRunCleanup:

    async def test_dry_run_only_counts(self, engine, reservations, ledger, product_factory, actor):
        """测试试运行只统计不释放"""
        product_id = await product_factory(quantity=10)
        await reservations.reserve(product_id, 2, actor, cart_session_id="cart-1")
        await reservations.expire_session("cart-1")

        assert await run_cleanup(dry_run=True, bind=engine) == 1
        assert (await ledger.get_record(product_id)).reserved_quantity == 2

    async def test_cleanup_releases(self, engine, reservations, ledger, product_factory, actor):
        product_id = await product_factory(quantity=10)
        await reservations.reserve(product_id, 2, actor, cart_session_id="cart-1")
        await reservations.expire_session("cart-1")

        assert await run_cleanup(batch_size=10, bind=engine) == 1
        assert (await ledger.get_record(product_id)).reserved_quantity == 0


class TestMain:

    def test_main_success(self):
        with patch('pos_stock.jobs.manual_cleanup.run_cleanup', new=AsyncMock(return_value=3)) as mock_run:
            assert main(["--batch-size", "50"]) == 0
        mock_run.assert_awaited_once_with(50, False)

    def test_main_failure(self):
        with patch('pos_stock.jobs.manual_cleanup.run_cleanup', new=AsyncMock(side_effect=Exception("连接失败"))):
            assert main(["--dry-run"]) == 1

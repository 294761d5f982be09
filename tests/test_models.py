"""模型单元测试"""
import pytest
from sqlalchemy.exc import IntegrityError

from pos_stock.db.base import Base
from pos_stock.models import (
    CartReservation,
    HoldStatus,
    InvoiceStatus,
    MovementType,
    Product,
    StockRecord,
)


class TestModelMetadata:
    """数据模型定义测试类"""

    def test_tables_registered(self):
        assert {
            "products",
            "product_stocks",
            "stock_movements",
            "product_expirations",
            "cart_reservations",
            "invoices",
            "invoice_lines",
            "payments",
        } <= set(Base.metadata.tables)

    def test_available_quantity_is_derived(self):
        """测试可用库存只在读取时计算，不落库"""
        record = StockRecord(product_id=1, quantity=10, reserved_quantity=4)
        assert record.available_quantity == 6
        assert "available_quantity" not in StockRecord.__table__.columns

    def test_reserved_quantity_check_constraint(self):
        names = {c.name for c in StockRecord.__table__.constraints}
        assert "ck_reserved_quantity_non_negative" in names

    def test_enum_values(self):
        assert [m.value for m in MovementType] == [
            "CREATION",
            "ADJUSTMENT",
            "RESERVE",
            "RELEASE",
            "SALE",
        ]
        assert HoldStatus.RESERVED.value == "RESERVED"
        assert InvoiceStatus.PAID.value == "PAID"

    def test_one_hold_per_cart_and_product(self):
        names = {c.name for c in CartReservation.__table__.constraints}
        assert "uq_cart_product" in names


class TestModelPersistence:
    """模型持久化测试类"""

    pytestmark = pytest.mark.anyio

    async def test_product_defaults(self, db_factory):
        """测试商品默认值"""
        async with db_factory() as db:
            async with db.begin():
                product = Product(sku="PROD001", name="测试商品")
                db.add(product)
                await db.flush()
                product_id = product.id

            saved = await db.get(Product, product_id)
            assert saved.controls_stock is True
            assert saved.has_expiration_date is False
            assert saved.is_active is True

    async def test_duplicate_sku_rejected(self, db_factory):
        async with db_factory() as db:
            async with db.begin():
                db.add(Product(sku="PROD001", name="测试商品"))

        async with db_factory() as db:
            with pytest.raises(IntegrityError):
                async with db.begin():
                    db.add(Product(sku="PROD001", name="重复商品"))

    async def test_duplicate_hold_rejected(self, db_factory, product_factory):
        """测试同一会话同一商品只能有一条预占记录"""
        product_id = await product_factory(quantity=10)

        async with db_factory() as db:
            with pytest.raises(IntegrityError):
                async with db.begin():
                    db.add(CartReservation(cart_session_id="cart-1", product_id=product_id, quantity=1))
                    db.add(CartReservation(cart_session_id="cart-1", product_id=product_id, quantity=2))

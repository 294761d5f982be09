"""测试配置和 fixtures

异步测试使用 anyio 插件，数据库为临时目录下的 SQLite 文件（aiosqlite），
每个测试独立建库。
"""
import pytest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

from redlock import Redlock
from sqlalchemy import select

from pos_stock.core.context import ActorContext
from pos_stock.core.locks import ProductLockManager
from pos_stock.db import init_db
from pos_stock.db.session import build_engine, build_session_factory
from pos_stock.models import (
    CartReservation,
    Invoice,
    Product,
    ProductExpiration,
    StockMovement,
)
from pos_stock.services.cart_session import CartSession
from pos_stock.services.catalog_service import CatalogService
from pos_stock.services.expiration_service import ExpirationService
from pos_stock.services.reservation_service import ReservationService
from pos_stock.services.sale_finalization import SaleFinalizationOrchestrator
from pos_stock.services.stock_ledger import StockLedger


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path, anyio_backend):
    """临时 SQLite 数据库"""
    bind = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'pos_test.db'}")
    await init_db(bind)
    try:
        yield bind
    finally:
        await bind.dispose()


@pytest.fixture
def db_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def actor():
    return ActorContext(user_id=7, source="test")


@pytest.fixture
def locks():
    return ProductLockManager()


@pytest.fixture
def ledger(db_factory, locks):
    return StockLedger(db_factory, locks)


@pytest.fixture
def catalog(db_factory):
    return CatalogService(db_factory)


@pytest.fixture
def expirations(db_factory):
    return ExpirationService(db_factory)


@pytest.fixture
def reservations(ledger, catalog, expirations):
    return ReservationService(ledger, catalog, expirations)


@pytest.fixture
def product_factory(db_factory, ledger, actor):
    """创建商品（以及库存记录）的工厂，返回商品ID"""
    counter = {"n": 0}

    async def _make(
        quantity=10,
        price="10.00",
        controls_stock=True,
        has_expiration_date=False,
        is_active=True,
        with_stock=True,
        minimum_stock=None,
        reorder_point=None,
    ):
        counter["n"] += 1
        async with db_factory() as db:
            async with db.begin():
                product = Product(
                    sku=f"SKU{counter['n']:04d}",
                    name=f"测试商品{counter['n']}",
                    sale_price=Decimal(price),
                    controls_stock=controls_stock,
                    has_expiration_date=has_expiration_date,
                    is_active=is_active,
                )
                db.add(product)
                await db.flush()
                product_id = product.id
        if with_stock:
            await ledger.create_stock(
                product_id,
                quantity,
                actor,
                minimum_stock=minimum_stock,
                reorder_point=reorder_point,
            )
        return product_id

    return _make


@pytest.fixture
def add_lot(db_factory):
    """添加有效期批次；days 为负数表示已过期"""

    async def _add(product_id, quantity, days):
        async with db_factory() as db:
            async with db.begin():
                db.add(
                    ProductExpiration(
                        product_id=product_id,
                        expiration_date=date.today() + timedelta(days=days),
                        quantity=quantity,
                        batch_number=f"LOT{days}",
                    )
                )

    return _add


@pytest.fixture
def fetch_movements(db_factory):
    async def _fetch(product_id):
        async with db_factory() as db:
            result = await db.execute(
                select(StockMovement)
                .where(StockMovement.product_id == product_id)
                .order_by(StockMovement.id)
            )
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def fetch_holds(db_factory):
    async def _fetch(cart_session_id):
        async with db_factory() as db:
            result = await db.execute(
                select(CartReservation)
                .where(CartReservation.cart_session_id == cart_session_id)
                .order_by(CartReservation.product_id)
            )
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def fetch_invoices(db_factory):
    async def _fetch():
        async with db_factory() as db:
            result = await db.execute(select(Invoice).order_by(Invoice.id))
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def mock_numbering():
    numbering = Mock()
    numbering.generate_next_number = AsyncMock(return_value="FT-00001")
    return numbering


@pytest.fixture
def mock_printer():
    printer = Mock()
    printer.print_receipt = AsyncMock(return_value=None)
    return printer


@pytest.fixture
def orchestrator(reservations, mock_numbering, mock_printer):
    return SaleFinalizationOrchestrator(
        reservations,
        numbering=mock_numbering,
        printer=mock_printer,
        allow_anonymous=True,
    )


@pytest.fixture
def cart_factory(reservations):
    def _make(**kwargs):
        return CartSession(reservations, **kwargs)

    return _make

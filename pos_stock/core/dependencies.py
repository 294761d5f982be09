"""依赖注入配置模块

服务实例在进程内共享（商品锁和收银会话必须是同一份），首次使用时创建。
测试中通过 app.dependency_overrides 替换。
"""

import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from celery_app import app as celery_app
from pos_stock.core.config import settings
from pos_stock.core.context import ActorContext
from pos_stock.core.locks import ProductLockManager
from pos_stock.core.redis import async_redis, create_redlock
from pos_stock.db.session import AsyncSessionLocal
from pos_stock.services.cart_session import CartSession, CartSessionRegistry
from pos_stock.services.catalog_service import CatalogService
from pos_stock.services.expiration_service import ExpirationService
from pos_stock.services.invoice_numbering import InvoiceNumberService
from pos_stock.services.receipt_printer import CeleryReceiptPrinter
from pos_stock.services.reservation_service import ReservationService
from pos_stock.services.sale_finalization import SaleFinalizationOrchestrator
from pos_stock.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


@lru_cache
def get_lock_manager() -> ProductLockManager:
    """获取商品锁管理器（多进程部署时叠加 Redlock）"""
    rlock = create_redlock() if settings.USE_REDLOCK else None
    return ProductLockManager(rlock=rlock, ttl_ms=settings.LOCK_TTL_MS)


@lru_cache
def get_stock_ledger() -> StockLedger:
    return StockLedger(
        AsyncSessionLocal,
        get_lock_manager(),
        allow_oversell=settings.ALLOW_OVERSELL,
    )


@lru_cache
def get_reservation_service() -> ReservationService:
    return ReservationService(
        get_stock_ledger(),
        CatalogService(AsyncSessionLocal),
        ExpirationService(AsyncSessionLocal),
        lease_minutes=settings.RESERVATION_LEASE_MINUTES,
    )


@lru_cache
def get_sale_orchestrator() -> SaleFinalizationOrchestrator:
    return SaleFinalizationOrchestrator(
        get_reservation_service(),
        numbering=InvoiceNumberService(async_redis, settings.INVOICE_PREFIX),
        printer=CeleryReceiptPrinter(celery_app),
        allow_anonymous=settings.ALLOW_ANONYMOUS_INVOICE,
    )


def schedule_cart_release(cart_session_id: str) -> None:
    """投递后台释放任务；预占已标记过期，投递失败时仍会被定时清理回收"""
    try:
        celery_app.send_task(
            "tasks.stock.release_cart_reservations", args=[cart_session_id]
        )
    except Exception as e:
        logger.error(f"投递释放任务失败: cart={cart_session_id}, error={str(e)}")


@lru_cache
def get_cart_registry() -> CartSessionRegistry:
    def factory() -> CartSession:
        return CartSession(
            get_reservation_service(),
            tax_rate=settings.DEFAULT_TAX_RATE,
            release_retry_attempts=settings.RELEASE_RETRY_ATTEMPTS,
            release_scheduler=schedule_cart_release,
        )

    return CartSessionRegistry(factory)


def get_actor(
    x_actor_user_id: Optional[int] = Header(None, description="操作人用户ID"),
) -> ActorContext:
    """从请求头读取操作人（本服务不做认证）"""
    return ActorContext(user_id=x_actor_user_id, source="api")


# 常用的依赖注入别名
StockLedgerDep = Depends(get_stock_ledger)
ReservationServiceDep = Depends(get_reservation_service)
SaleOrchestratorDep = Depends(get_sale_orchestrator)
CartRegistryDep = Depends(get_cart_registry)
ActorDep = Depends(get_actor)

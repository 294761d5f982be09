"""库存相关的 Celery 任务

每个任务在独立的事件循环中运行（asyncio.run），因此使用独立的数据库引擎，
任务结束时释放连接池。多进程部署时需开启 USE_REDLOCK，与 API 进程共用商品锁。
"""

import asyncio
import logging

from celery_app import app
from pos_stock.core.config import settings
from pos_stock.core.context import ActorContext
from pos_stock.core.locks import ProductLockManager
from pos_stock.core.redis import create_redlock
from pos_stock.db.session import build_engine, build_session_factory
from pos_stock.services.catalog_service import CatalogService
from pos_stock.services.expiration_service import ExpirationService
from pos_stock.services.reservation_service import ReservationService
from pos_stock.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


def build_reservation_service(bind) -> ReservationService:
    db_factory = build_session_factory(bind)
    rlock = create_redlock() if settings.USE_REDLOCK else None
    ledger = StockLedger(
        db_factory,
        ProductLockManager(rlock=rlock, ttl_ms=settings.LOCK_TTL_MS),
        allow_oversell=settings.ALLOW_OVERSELL,
    )
    return ReservationService(
        ledger,
        CatalogService(db_factory),
        ExpirationService(db_factory),
        lease_minutes=settings.RESERVATION_LEASE_MINUTES,
    )


async def _cleanup(batch_size: int) -> int:
    bind = build_engine()
    try:
        service = build_reservation_service(bind)
        return await service.cleanup_expired_reservations(batch_size)
    finally:
        await bind.dispose()


async def _release_cart(cart_session_id: str) -> int:
    bind = build_engine()
    try:
        service = build_reservation_service(bind)
        return await service.release_session(
            cart_session_id, ActorContext.system("release_task")
        )
    finally:
        await bind.dispose()


@app.task(name='tasks.stock.cleanup_expired_reservations')
def cleanup_expired_reservations(batch_size: int = 500):
    """清理过期的预占记录

    Args:
        batch_size: 批处理大小，默认500条

    Returns:
        清理的记录数量描述
    """
    try:
        count = asyncio.run(_cleanup(batch_size))
        result = f"成功清理 {count} 条过期预占记录"
        logger.info(result)
        return result
    except Exception as e:
        logger.error(f"清理过期预占任务执行失败: {str(e)}")
        raise


@app.task(
    name='tasks.stock.release_cart_reservations',
    bind=True,
    max_retries=5,
    default_retry_delay=30,
)
def release_cart_reservations(self, cart_session_id: str):
    """释放被放弃的收银会话仍持有的预占（放弃时释放失败的补偿任务）"""
    try:
        count = asyncio.run(_release_cart(cart_session_id))
    except Exception as e:
        logger.error(f"释放收银会话预占失败: cart={cart_session_id}, error={str(e)}")
        raise self.retry(exc=e)
    result = f"收银会话 {cart_session_id} 释放 {count} 条预占"
    logger.info(result)
    return result


# 导出任务
__all__ = [
    'cleanup_expired_reservations',
    'release_cart_reservations',
]

"""按商品维度的锁管理

同一商品上的预占 / 释放 / 调整 / 提交必须串行执行，不同商品之间互不阻塞。
进程内使用每个商品一把 asyncio.Lock；多进程部署时可叠加 Redlock 分布式锁。
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Optional

from redlock import Redlock

from pos_stock.core.exceptions import LockAcquisitionError

logger = logging.getLogger(__name__)


class ProductLockManager:
    """商品锁管理器"""

    def __init__(self, rlock: Optional[Redlock] = None, ttl_ms: int = 10000):
        self.rlock = rlock
        self.ttl_ms = ttl_ms
        # 每个商品一把锁，创建后不删除，数量上限为商品目录大小；
        # 锁在等待者之间必须是同一个对象，不能随用随删
        self._locks: Dict[int, asyncio.Lock] = {}

    def _local_lock(self, product_id: int) -> asyncio.Lock:
        lock = self._locks.get(product_id)
        if lock is None:
            lock = self._locks[product_id] = asyncio.Lock()
        return lock

    async def _acquire_distributed(self, product_id: int):
        lock_key = f"lock:inventory:{product_id}"
        # redlock-py 是同步客户端，放到线程中执行避免阻塞事件循环
        lock = await asyncio.to_thread(self.rlock.lock, lock_key, self.ttl_ms)
        if not lock:
            raise LockAcquisitionError(product_id)
        return lock

    @asynccontextmanager
    async def hold(self, product_id: int) -> AsyncIterator[None]:
        """持有单个商品的锁"""
        local = self._local_lock(product_id)
        async with local:
            dlock = None
            if self.rlock:
                dlock = await self._acquire_distributed(product_id)
            try:
                yield
            finally:
                if dlock:
                    await asyncio.to_thread(self.rlock.unlock, dlock)

    @asynccontextmanager
    async def hold_many(self, product_ids: Iterable[int]) -> AsyncIterator[None]:
        """按商品ID升序依次加锁，避免两个购物车交叉加锁导致死锁"""
        async with AsyncExitStack() as stack:
            for product_id in sorted(set(product_ids)):
                await stack.enter_async_context(self.hold(product_id))
            yield

"""发票号生成

使用 Redis INCR 作为全局递增序列，格式为 "<前缀>-<序号5位>"，例如 FT-00042。
"""

import asyncio
import logging

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from pos_stock.core.exceptions import InvoiceNumberUnavailableError

logger = logging.getLogger(__name__)


class InvoiceNumberService:

    def __init__(self, redis: AsyncRedis, prefix: str = "FT", timeout: float = 2.0):
        self.redis = redis
        self.prefix = prefix
        # 收银不能因为发号服务卡住而无限等待
        self.timeout = timeout

    @property
    def sequence_key(self) -> str:
        return f"invoice:sequence:{self.prefix}"

    async def generate_next_number(self) -> str:
        try:
            number = await asyncio.wait_for(self.redis.incr(self.sequence_key), self.timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.warning(f"发票号序列不可用: {str(e)}")
            raise InvoiceNumberUnavailableError("发票号服务不可用") from e
        return f"{self.prefix}-{int(number):05d}"

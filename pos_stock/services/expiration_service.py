"""有效期批次服务"""

from datetime import date
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from pos_stock.models.expirations import ProductExpiration


class ExpirationService:

    def __init__(self, db_factory: async_sessionmaker, today: Optional[Callable[[], date]] = None):
        self.db_factory = db_factory
        self.today = today or date.today

    async def get_expired_quantity(self, product_id: int) -> int:
        """已过期批次的数量合计（到期日早于今天即视为过期）"""
        async with self.db_factory() as db:
            total = (
                await db.execute(
                    select(func.coalesce(func.sum(ProductExpiration.quantity), 0))
                    .where(
                        ProductExpiration.product_id == product_id,
                        ProductExpiration.expiration_date < self.today(),
                    )
                )
            ).scalar_one()
        return max(int(total), 0)

"""商品目录（只读）"""

from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from pos_stock.models.product import Product
from pos_stock.schemas.catalog import ProductInfo


class CatalogService:

    def __init__(self, db_factory: async_sessionmaker):
        self.db_factory = db_factory

    async def get_product(self, product_id: int) -> Optional[ProductInfo]:
        async with self.db_factory() as db:
            product = await db.get(Product, product_id)
            if product is None:
                return None
            return ProductInfo.model_validate(product)

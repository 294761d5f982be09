from decimal import Decimal

from pos_stock.schemas.base import ORMSchema


class ProductInfo(ORMSchema):
    """收银核心关心的商品信息（只读）"""

    id: int
    sku: str
    name: str
    sale_price: Decimal
    controls_stock: bool = True
    has_expiration_date: bool = False
    is_active: bool = True

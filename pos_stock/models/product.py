from sqlalchemy import (
    Column,
    String,
    Boolean,
    Numeric,
    TIMESTAMP,
    Index,
    func,
)
from pos_stock.db.base import Base, BigIntPK


class Product(Base):
    __tablename__ = "products"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    sku = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="商品唯一SKU",
    )

    name = Column(
        String(255),
        nullable=False,
        comment="商品名称",
    )

    sale_price = Column(
        Numeric(18, 2),
        nullable=False,
        server_default="0",
        comment="销售单价",
    )

    controls_stock = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="是否管控库存（服务类商品不管控）",
    )

    has_expiration_date = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="是否按批次管理有效期",
    )

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
        onupdate=func.now(),
    )


Index(
    "idx_products_name",
    Product.name,
)

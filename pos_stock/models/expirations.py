from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Date,
    ForeignKey,
    TIMESTAMP,
    Index,
    func,
)
from pos_stock.db.base import Base, BigIntPK


class ProductExpiration(Base):
    """商品有效期批次"""

    __tablename__ = "product_expirations"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        comment="商品ID",
    )

    expiration_date = Column(
        Date,
        nullable=False,
        comment="到期日（当天仍可售）",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="批次数量",
    )

    batch_number = Column(
        String(100),
        nullable=True,
    )

    notes = Column(
        String(500),
        nullable=True,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


Index(
    "idx_expirations_product_date",
    ProductExpiration.product_id,
    ProductExpiration.expiration_date,
)

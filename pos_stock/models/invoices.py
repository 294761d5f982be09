import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Boolean,
    Numeric,
    TIMESTAMP,
    Enum,
    ForeignKey,
    func,
)
from sqlalchemy.orm import relationship
from pos_stock.db.base import Base, BigIntPK


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    PENDING = "PENDING"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    invoice_number = Column(
        String(50),
        nullable=False,
        unique=True,
        comment="发票号",
    )

    # 同一个购物车只能成交一次
    cart_session_id = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="来源收银会话",
    )

    status = Column(
        Enum(InvoiceStatus, name="invoice_status_type"),
        nullable=False,
        default=InvoiceStatus.DRAFT,
    )

    person_id = Column(
        BigInteger,
        nullable=True,
        comment="客户ID（匿名销售为空）",
    )

    user_id = Column(
        BigInteger,
        nullable=True,
        comment="收银员",
    )

    sub_total = Column(Numeric(18, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(18, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(18, 2), nullable=False, default=0)
    total = Column(Numeric(18, 2), nullable=False)
    paid_amount = Column(Numeric(18, 2), nullable=False, default=0)

    notes = Column(String(1000), nullable=True)

    issued_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    lines = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    payments = relationship(
        "Payment",
        back_populates="invoice",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    invoice_id = Column(
        BigInteger,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    product_id = Column(
        BigInteger,
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(18, 2), nullable=False)
    discount_percentage = Column(Numeric(9, 4), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)

    invoice = relationship("Invoice", back_populates="lines")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    invoice_id = Column(
        BigInteger,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    payment_type_id = Column(
        Integer,
        nullable=False,
        comment="支付方式（外部维护）",
    )

    amount = Column(Numeric(18, 2), nullable=False)
    reference = Column(String(100), nullable=True)
    is_confirmed = Column(Boolean, nullable=False, default=True)

    paid_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    invoice = relationship("Invoice", back_populates="payments")

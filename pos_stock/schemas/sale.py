"""销售结果快照（打印小票、接口返回用）"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from pos_stock.models.invoices import InvoiceStatus
from pos_stock.schemas.base import ORMSchema


class InvoiceLineSnapshot(ORMSchema):
    product_id: int
    quantity: int
    unit_price: Decimal
    discount_percentage: Decimal
    tax_rate: Decimal


class PaymentSnapshot(ORMSchema):
    payment_type_id: int
    amount: Decimal
    reference: Optional[str] = None


class InvoiceSnapshot(ORMSchema):
    id: int
    invoice_number: str
    cart_session_id: str
    status: InvoiceStatus
    person_id: Optional[int] = None
    user_id: Optional[int] = None
    sub_total: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    paid_amount: Decimal
    issued_at: Optional[datetime] = None
    lines: List[InvoiceLineSnapshot] = Field(default_factory=list)
    payments: List[PaymentSnapshot] = Field(default_factory=list)


class SaleResult(ORMSchema):
    """一次结算的结果

    printed 为 False 时 print_error 说明原因；销售本身已提交，不受影响。
    """

    invoice: InvoiceSnapshot
    change_due: Decimal
    printed: bool
    print_error: Optional[str] = None

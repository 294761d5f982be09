# Models
from .product import Product
from .product_stocks import StockRecord
from .stock_movements import StockMovement, MovementType
from .expirations import ProductExpiration
from .cart_reservations import CartReservation, HoldStatus
from .invoices import Invoice, InvoiceLine, Payment, InvoiceStatus

__all__ = [
    "Product",
    "StockRecord",
    "StockMovement",
    "MovementType",
    "ProductExpiration",
    "CartReservation",
    "HoldStatus",
    "Invoice",
    "InvoiceLine",
    "Payment",
    "InvoiceStatus",
]

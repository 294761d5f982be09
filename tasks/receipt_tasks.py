"""小票打印任务"""

import asyncio
import logging

from celery_app import app
from pos_stock.schemas.sale import InvoiceSnapshot
from pos_stock.services.receipt_printer import LoggingReceiptPrinter

logger = logging.getLogger(__name__)


@app.task(name='tasks.receipt.print_receipt')
def print_receipt(snapshot: dict):
    invoice = InvoiceSnapshot.model_validate(snapshot)
    asyncio.run(LoggingReceiptPrinter().print_receipt(invoice))
    return invoice.invoice_number


__all__ = ['print_receipt']

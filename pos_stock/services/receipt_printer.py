"""小票输出

打印是销售提交之后的副作用，失败不会回滚已提交的销售。
"""

import asyncio
import logging

from pos_stock.schemas.sale import InvoiceSnapshot

logger = logging.getLogger(__name__)


class LoggingReceiptPrinter:
    """把小票内容写入日志（开发环境 / Celery worker 内的默认实现）"""

    async def print_receipt(self, snapshot: InvoiceSnapshot) -> None:
        logger.info(f"==== 小票 {snapshot.invoice_number} ====")
        for line in snapshot.lines:
            logger.info(f"商品 {line.product_id} x{line.quantity} @ {line.unit_price}")
        logger.info(
            f"小计 {snapshot.sub_total} 折扣 {snapshot.discount_amount} "
            f"税额 {snapshot.tax_amount} 合计 {snapshot.total} 实收 {snapshot.paid_amount}"
        )


class CeleryReceiptPrinter:
    """把打印任务投递到 Celery 队列，由打印 worker 处理"""

    task_name = "tasks.receipt.print_receipt"

    def __init__(self, celery_app):
        self.celery_app = celery_app

    async def print_receipt(self, snapshot: InvoiceSnapshot) -> None:
        payload = snapshot.model_dump(mode="json")
        # send_task 会同步连接 broker
        await asyncio.to_thread(self.celery_app.send_task, self.task_name, args=[payload])
        logger.info(f"已提交小票打印任务: {snapshot.invoice_number}")

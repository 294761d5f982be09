"""收银库存核心的异常体系

所有异常继承自 InventoryError，并带有机器可读的 code 字段，
API 层据此生成统一的错误响应。

    InventoryError
    +-- StockNotFoundError          商品没有库存记录
    +-- DuplicateStockError         库存记录已存在
    +-- InvariantViolationError     调用方违反账本不变量（负数、超额释放等）
    +-- InsufficientStockError      提交阶段库存不足
    +-- ReservationLostError        提交时预占已不存在（例如已被租期清理）
    +-- LockAcquisitionError        获取商品锁失败
    +-- ReleaseFailedError          补偿释放失败
    +-- InvoiceNumberUnavailableError
    +-- CartStateError              购物车状态不允许该操作
    |   +-- CartNotFoundError
    +-- ImmutableAuditEntryError    试图修改或删除审计流水
    +-- SaleError
        +-- SaleValidationError     结算前复核失败（指明商品）
        +-- UnderpaidSaleError
        +-- EmptyCartError
        +-- SaleCommitError         原子提交失败，已整体回滚

注意：预占时的库存不足属于正常业务结果，通过 ReservationResult 返回，
不会抛出异常。
"""

from typing import Optional


class InventoryError(Exception):
    """基础异常"""

    code: str = "INVENTORY_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StockNotFoundError(InventoryError):
    code = "STOCK_NOT_FOUND"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"商品 {product_id} 没有库存记录")


class DuplicateStockError(InventoryError):
    code = "STOCK_ALREADY_EXISTS"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"商品 {product_id} 的库存记录已存在")


class InvariantViolationError(InventoryError):
    code = "INVARIANT_VIOLATION"

    def __init__(self, message: str, product_id: Optional[int] = None):
        self.product_id = product_id
        super().__init__(message)


class InsufficientStockError(InventoryError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"商品 {product_id} 库存不足: 需要 {requested}, 可用 {available}"
        )


class ReservationLostError(InventoryError):
    code = "RESERVATION_LOST"

    def __init__(self, product_id: int, cart_session_id: str, held: int, required: int):
        self.product_id = product_id
        self.cart_session_id = cart_session_id
        self.held = held
        self.required = required
        super().__init__(
            f"购物车 {cart_session_id} 对商品 {product_id} 的预占已失效: "
            f"持有 {held}, 需要 {required}"
        )


class LockAcquisitionError(InventoryError):
    code = "LOCK_CONFLICT"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__("库存操作冲突，请稍后重试")


class ReleaseFailedError(InventoryError):
    code = "RELEASE_FAILED"

    def __init__(self, message: str, product_ids: Optional[list] = None):
        self.product_ids = product_ids or []
        super().__init__(message)


class InvoiceNumberUnavailableError(InventoryError):
    code = "INVOICE_NUMBER_UNAVAILABLE"


class CartStateError(InventoryError):
    code = "CART_STATE_INVALID"


class ImmutableAuditEntryError(InventoryError):
    code = "AUDIT_ENTRY_IMMUTABLE"


class SaleError(InventoryError):
    code = "SALE_ERROR"


class SaleValidationError(SaleError):
    code = "SALE_VALIDATION_FAILED"

    def __init__(self, message: str, product_id: Optional[int] = None):
        self.product_id = product_id
        super().__init__(message)


class UnderpaidSaleError(SaleError):
    code = "SALE_UNDERPAID"


class EmptyCartError(SaleError):
    code = "CART_EMPTY"


class SaleCommitError(SaleError):
    code = "SALE_COMMIT_FAILED"


class CartNotFoundError(CartStateError):
    code = "CART_NOT_FOUND"

    def __init__(self, cart_session_id: str):
        self.cart_session_id = cart_session_id
        super().__init__(f"收银会话 {cart_session_id} 不存在")

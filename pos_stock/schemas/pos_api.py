"""收银库存 API 专用的 Pydantic 模型和响应格式"""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from pos_stock.schemas.base import ORMSchema
from pos_stock.schemas.sale import SaleResult


# ==================== 请求模型 ====================

class CreateStockRequest(BaseModel):
    """建立库存记录请求"""
    product_id: int = Field(
        ...,
        gt=0,
        description="商品ID",
        examples=[1]
    )
    quantity: int = Field(
        0,
        ge=0,
        description="初始库存",
        examples=[100]
    )
    minimum_stock: Optional[int] = Field(
        None,
        ge=0,
        description="最低库存"
    )
    reorder_point: Optional[int] = Field(
        None,
        ge=0,
        description="补货点"
    )


class SetQuantityRequest(BaseModel):
    """调整库存数量请求（盘点）"""
    quantity: int = Field(
        ...,
        ge=0,
        description="新的在库数量",
        examples=[80]
    )
    note: Optional[str] = Field(
        None,
        max_length=500,
        description="调整说明"
    )


class ReserveStockRequest(BaseModel):
    """预占 / 释放库存请求"""
    product_id: int = Field(
        ...,
        gt=0,
        description="商品ID",
        examples=[1]
    )
    quantity: int = Field(
        ...,
        gt=0,
        description="数量",
        examples=[2]
    )
    cart_session_id: Optional[str] = Field(
        None,
        min_length=1,
        max_length=64,
        description="收银会话ID"
    )


class CleanupRequest(BaseModel):
    """清理任务请求"""
    batch_size: int = Field(
        500,
        ge=1,
        le=10000,
        description="批处理大小",
        examples=[500]
    )


class AddCartItemRequest(BaseModel):
    """加购请求"""
    product_id: int = Field(..., gt=0, description="商品ID")
    quantity: int = Field(1, gt=0, description="数量")


class DecreaseCartItemRequest(BaseModel):
    quantity: int = Field(1, gt=0, description="减少的数量")


class LineDiscountRequest(BaseModel):
    amount: Decimal = Field(..., ge=0, description="折扣金额")


class AddPaymentRequest(BaseModel):
    """添加付款请求"""
    payment_type_id: int = Field(..., gt=0, description="支付方式ID")
    amount: Decimal = Field(..., gt=0, description="付款金额")
    reference: Optional[str] = Field(None, max_length=100, description="付款凭证号")


class SetCustomerRequest(BaseModel):
    person_id: Optional[int] = Field(None, gt=0, description="客户ID，为空表示匿名销售")


# ==================== 响应模型 ====================

class BaseResponse(BaseModel):
    """基础响应模型"""
    success: bool = Field(
        ...,
        description="请求是否成功"
    )
    message: Optional[str] = Field(
        None,
        description="响应消息"
    )


class StockDetail(ORMSchema):
    """库存记录详情"""
    product_id: int
    quantity: int
    reserved_quantity: int
    available_quantity: int
    minimum_stock: Optional[int] = None
    reorder_point: Optional[int] = None


class StockResponse(BaseResponse):
    """单个商品库存响应"""
    data: StockDetail


class AvailableStockResponse(BaseResponse):
    product_id: int = Field(
        ...,
        description="商品ID"
    )
    available_stock: int = Field(
        ...,
        description="可用库存数量"
    )
    sellable_stock: int = Field(
        ...,
        ge=0,
        description="可售数量（扣除已过期批次）"
    )


class StockListResponse(BaseResponse):
    data: List[StockDetail] = Field(default_factory=list)


class OperationResponse(BaseResponse):
    """操作响应（释放等）"""
    data: Optional[bool] = Field(
        None,
        description="操作结果"
    )


class ReserveResponse(BaseResponse):
    outcome: str = Field(..., description="预占结果")
    available_before: Optional[int] = None
    sellable: Optional[int] = None


class CleanupResponse(BaseResponse):
    """清理任务响应"""
    cleaned_count: Optional[int] = Field(
        None,
        ge=0,
        description="清理的记录数量"
    )


class CeleryTaskResponse(BaseResponse):
    """Celery任务响应"""
    task_id: Optional[str] = Field(
        None,
        description="任务ID"
    )


class CartLineDetail(BaseModel):
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    reserved: int


class CartPaymentDetail(BaseModel):
    entry_id: str
    payment_type_id: int
    amount: Decimal
    reference: Optional[str] = None


class CartTotalsDetail(BaseModel):
    sub_total: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    paid_amount: Decimal
    change_due: Decimal
    remaining: Decimal


class CartResponse(BaseResponse):
    cart_session_id: str
    state: str
    person_id: Optional[int] = None
    lines: List[CartLineDetail] = Field(default_factory=list)
    payments: List[CartPaymentDetail] = Field(default_factory=list)
    totals: CartTotalsDetail


class SaleResponse(BaseResponse):
    data: SaleResult


class HealthCheckResponse(BaseModel):
    """健康检查响应"""
    status: str = Field(
        "healthy",
        description="服务状态"
    )
    service: str = Field(
        "pos-stock-service",
        description="服务名称"
    )
    version: str = Field(
        "1.0.0",
        description="服务版本"
    )
    checks: Dict[str, str] = Field(default_factory=dict)

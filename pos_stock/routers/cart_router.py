"""收银会话 API 路由"""

import logging

from fastapi import APIRouter, Body, Path
from fastapi.responses import JSONResponse

from pos_stock.core.context import ActorContext
from pos_stock.core.dependencies import ActorDep, CartRegistryDep, SaleOrchestratorDep
from pos_stock.schemas.pos_api import (
    AddCartItemRequest,
    AddPaymentRequest,
    CartLineDetail,
    CartPaymentDetail,
    CartResponse,
    CartTotalsDetail,
    DecreaseCartItemRequest,
    LineDiscountRequest,
    OperationResponse,
    SaleResponse,
    SetCustomerRequest,
)
from pos_stock.services.cart_session import CartSession, CartSessionRegistry
from pos_stock.services.reservation_service import ReservationOutcome
from pos_stock.services.sale_finalization import SaleFinalizationOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/carts",
    tags=["收银会话"],
    responses={
        400: {"description": "请求参数错误"},
        404: {"description": "收银会话或商品不存在"},
        409: {"description": "库存或会话状态冲突"},
        500: {"description": "服务器内部错误"}
    }
)

_OUTCOME_MESSAGES = {
    ReservationOutcome.INSUFFICIENT_STOCK: "库存不足",
    ReservationOutcome.EXPIRED_STOCK: "未过期库存不足",
    ReservationOutcome.NOT_FOUND: "商品不存在或已停用",
}


def _cart_response(cart: CartSession, message: str = None) -> CartResponse:
    totals = cart.totals()
    return CartResponse(
        success=True,
        message=message,
        cart_session_id=cart.session_id,
        state=cart.state.value,
        person_id=cart.person_id,
        lines=[
            CartLineDetail(
                product_id=line.product_id,
                name=line.product.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                discount=line.discount,
                reserved=line.reserved,
            )
            for line in cart.lines.values()
        ],
        payments=[
            CartPaymentDetail(
                entry_id=entry.entry_id,
                payment_type_id=entry.payment_type_id,
                amount=entry.amount,
                reference=entry.reference,
            )
            for entry in cart.payments
        ],
        totals=CartTotalsDetail(
            sub_total=totals.sub_total,
            discount_amount=totals.discount_amount,
            tax_amount=totals.tax_amount,
            total=totals.total,
            paid_amount=totals.paid_amount,
            change_due=totals.change_due,
            remaining=totals.remaining,
        ),
    )


@router.post("", response_model=CartResponse, status_code=201, summary="打开收银会话")
async def open_cart(registry: CartSessionRegistry = CartRegistryDep):
    cart = registry.open()
    return _cart_response(cart, "会话已打开")


@router.get("/{cart_id}", response_model=CartResponse, summary="查看收银会话")
async def get_cart(
    cart_id: str = Path(..., description="收银会话ID"),
    registry: CartSessionRegistry = CartRegistryDep,
):
    return _cart_response(registry.get(cart_id))


@router.post(
    "/{cart_id}/items",
    response_model=CartResponse,
    summary="加购",
    description="同一商品合并到已有行；加购即预占，可售数量不足时返回 409 且购物车不变。",
)
async def add_item(
    cart_id: str = Path(..., description="收银会话ID"),
    request: AddCartItemRequest = Body(...),
    registry: CartSessionRegistry = CartRegistryDep,
    actor: ActorContext = ActorDep,
):
    cart = registry.get(cart_id)
    result = await cart.add_product(request.product_id, request.quantity, actor)
    if not result:
        return JSONResponse(
            status_code=404 if result.outcome is ReservationOutcome.NOT_FOUND else 409,
            content={
                "success": False,
                "message": _OUTCOME_MESSAGES[result.outcome],
                "code": result.outcome.value,
            },
        )
    return _cart_response(cart, "加购成功")


@router.post("/{cart_id}/items/{product_id}/decrease", response_model=CartResponse, summary="减少数量")
async def decrease_item(
    cart_id: str = Path(...),
    product_id: int = Path(..., gt=0),
    request: DecreaseCartItemRequest = Body(DecreaseCartItemRequest()),
    registry: CartSessionRegistry = CartRegistryDep,
    actor: ActorContext = ActorDep,
):
    cart = registry.get(cart_id)
    await cart.decrease_quantity(product_id, actor, quantity=request.quantity)
    return _cart_response(cart)


@router.delete("/{cart_id}/items/{product_id}", response_model=CartResponse, summary="删除商品行")
async def remove_item(
    cart_id: str = Path(...),
    product_id: int = Path(..., gt=0),
    registry: CartSessionRegistry = CartRegistryDep,
    actor: ActorContext = ActorDep,
):
    cart = registry.get(cart_id)
    await cart.remove_line(product_id, actor)
    return _cart_response(cart)


@router.put("/{cart_id}/items/{product_id}/discount", response_model=CartResponse, summary="设置行折扣")
async def set_line_discount(
    cart_id: str = Path(...),
    product_id: int = Path(..., gt=0),
    request: LineDiscountRequest = Body(...),
    registry: CartSessionRegistry = CartRegistryDep,
):
    cart = registry.get(cart_id)
    cart.set_discount(product_id, request.amount)
    return _cart_response(cart)


@router.put("/{cart_id}/customer", response_model=CartResponse, summary="选择客户")
async def set_customer(
    cart_id: str = Path(...),
    request: SetCustomerRequest = Body(...),
    registry: CartSessionRegistry = CartRegistryDep,
):
    cart = registry.get(cart_id)
    cart.set_customer(request.person_id)
    return _cart_response(cart)


@router.post("/{cart_id}/payments", response_model=CartResponse, summary="添加付款")
async def add_payment(
    cart_id: str = Path(...),
    request: AddPaymentRequest = Body(...),
    registry: CartSessionRegistry = CartRegistryDep,
):
    cart = registry.get(cart_id)
    cart.add_payment(request.payment_type_id, request.amount, request.reference)
    return _cart_response(cart)


@router.delete("/{cart_id}/payments/{entry_id}", response_model=CartResponse, summary="删除付款")
async def remove_payment(
    cart_id: str = Path(...),
    entry_id: str = Path(...),
    registry: CartSessionRegistry = CartRegistryDep,
):
    cart = registry.get(cart_id)
    cart.remove_payment(entry_id)
    return _cart_response(cart)


@router.post(
    "/{cart_id}/finalize",
    response_model=SaleResponse,
    summary="结算",
    description="""复核购物车后在一个事务内写入发票、发票行、付款并扣减库存。

    - 复核失败不写入任何记录，预占保持不变，会话可以继续编辑
    - 小票打印失败不影响已提交的销售，结果中 printed 为 false
    """,
)
async def finalize_cart(
    cart_id: str = Path(...),
    registry: CartSessionRegistry = CartRegistryDep,
    orchestrator: SaleFinalizationOrchestrator = SaleOrchestratorDep,
    actor: ActorContext = ActorDep,
):
    cart = registry.get(cart_id)
    result = await orchestrator.finalize(cart, actor)
    registry.discard(cart_id)
    return SaleResponse(success=True, message="结算成功", data=result)


@router.delete("/{cart_id}", response_model=OperationResponse, summary="放弃收银会话")
async def abandon_cart(
    cart_id: str = Path(...),
    registry: CartSessionRegistry = CartRegistryDep,
    actor: ActorContext = ActorDep,
):
    cart = registry.get(cart_id)
    await cart.abandon(actor)
    registry.discard(cart_id)
    return OperationResponse(success=True, message="会话已放弃，预占已释放", data=True)

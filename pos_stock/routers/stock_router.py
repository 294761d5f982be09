"""库存账本 API 路由"""

import logging

from fastapi import APIRouter, Body, Path
from fastapi.responses import JSONResponse

from pos_stock.core.context import ActorContext
from pos_stock.core.dependencies import (
    ActorDep,
    ReservationServiceDep,
    StockLedgerDep,
)
from pos_stock.schemas.pos_api import (
    AvailableStockResponse,
    CeleryTaskResponse,
    CleanupRequest,
    CleanupResponse,
    CreateStockRequest,
    OperationResponse,
    ReserveResponse,
    ReserveStockRequest,
    SetQuantityRequest,
    StockDetail,
    StockListResponse,
    StockResponse,
)
from pos_stock.services.reservation_service import ReservationOutcome, ReservationService
from pos_stock.services.stock_ledger import StockLedger
from tasks.stock_tasks import cleanup_expired_reservations as celery_cleanup_task

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/stock",
    tags=["库存账本"],
    responses={
        400: {"description": "请求参数错误"},
        404: {"description": "资源未找到"},
        409: {"description": "库存冲突"},
        422: {"description": "请求验证失败"},
        429: {"description": "库存操作冲突，请稍后重试"},
        500: {"description": "服务器内部错误"}
    }
)


@router.post(
    "",
    response_model=StockResponse,
    status_code=201,
    summary="建立库存记录",
)
async def create_stock(
    request: CreateStockRequest = Body(...),
    ledger: StockLedger = StockLedgerDep,
    actor: ActorContext = ActorDep,
):
    record = await ledger.create_stock(
        request.product_id,
        request.quantity,
        actor,
        minimum_stock=request.minimum_stock,
        reorder_point=request.reorder_point,
    )
    return StockResponse(success=True, message="建立成功", data=StockDetail.model_validate(record))


@router.get(
    "/low",
    response_model=StockListResponse,
    summary="低库存商品",
    description="在库数量不高于最低库存的商品。",
)
async def get_low_stock(ledger: StockLedger = StockLedgerDep):
    records = await ledger.get_low_stock()
    return StockListResponse(success=True, data=[StockDetail.model_validate(r) for r in records])


@router.get("/out", response_model=StockListResponse, summary="缺货商品")
async def get_out_of_stock(ledger: StockLedger = StockLedgerDep):
    records = await ledger.get_out_of_stock()
    return StockListResponse(success=True, data=[StockDetail.model_validate(r) for r in records])


@router.get("/reorder", response_model=StockListResponse, summary="需要补货的商品")
async def get_reorder_candidates(ledger: StockLedger = StockLedgerDep):
    records = await ledger.get_reorder_candidates()
    return StockListResponse(success=True, data=[StockDetail.model_validate(r) for r in records])


@router.get(
    "/{product_id}",
    response_model=StockResponse,
    summary="查询库存记录",
)
async def get_stock(
    product_id: int = Path(..., gt=0, description="商品ID"),
    ledger: StockLedger = StockLedgerDep,
):
    record = await ledger.get_record(product_id)
    return StockResponse(success=True, data=StockDetail.model_validate(record))


@router.get(
    "/{product_id}/available",
    response_model=AvailableStockResponse,
    summary="查询可用库存",
    description="""可用库存 = 在库数量 - 预占数量，每次实时计算，不做缓存。

    可售数量在此基础上再扣除已过期批次。
    """,
)
async def get_available(
    product_id: int = Path(..., gt=0, description="商品ID"),
    ledger: StockLedger = StockLedgerDep,
    service: ReservationService = ReservationServiceDep,
):
    available = await ledger.get_available(product_id)
    sellable = await service.sellable_ceiling(product_id)
    return AvailableStockResponse(
        success=True,
        product_id=product_id,
        available_stock=available,
        sellable_stock=sellable,
    )


@router.put(
    "/{product_id}/quantity",
    response_model=StockResponse,
    summary="调整在库数量",
    description="盘点调整，覆盖在库数量，不影响预占数量，并记录调整流水。",
)
async def set_quantity(
    product_id: int = Path(..., gt=0, description="商品ID"),
    request: SetQuantityRequest = Body(...),
    ledger: StockLedger = StockLedgerDep,
    actor: ActorContext = ActorDep,
):
    record = await ledger.set_quantity(product_id, request.quantity, actor, note=request.note)
    return StockResponse(success=True, message="调整成功", data=StockDetail.model_validate(record))


@router.post(
    "/reserve",
    response_model=ReserveResponse,
    summary="预占库存",
    description="""预占指定商品的库存数量，防止超卖。

    **特点：**
    - 同一商品的校验与预占在商品锁和行级锁内原子完成
    - 多进程部署时可叠加 Redlock 分布式锁
    - 可售数量不足时返回 409，调用方不应盲目重试
    """,
    responses={
        409: {
            "description": "可售数量不足",
            "content": {
                "application/json": {
                    "example": {
                        "success": False,
                        "message": "库存不足",
                        "code": "INSUFFICIENT_STOCK"
                    }
                }
            }
        }
    }
)
async def reserve_stock(
    request: ReserveStockRequest = Body(...),
    service: ReservationService = ReservationServiceDep,
    actor: ActorContext = ActorDep,
):
    result = await service.reserve(
        request.product_id, request.quantity, actor, cart_session_id=request.cart_session_id
    )
    if not result:
        status_code = 404 if result.outcome is ReservationOutcome.NOT_FOUND else 409
        return JSONResponse(
            status_code=status_code,
            content={
                "success": False,
                "message": "库存不足" if status_code == 409 else "商品不存在",
                "code": result.outcome.value,
            },
        )
    return ReserveResponse(
        success=True,
        message="预占成功",
        outcome=result.outcome.value,
        available_before=result.available_before,
        sellable=result.sellable,
    )


@router.post(
    "/release",
    response_model=OperationResponse,
    summary="释放预占库存",
    description="释放数量超过已预占数量（重复释放）时返回 409。",
)
async def release_stock(
    request: ReserveStockRequest = Body(...),
    service: ReservationService = ReservationServiceDep,
    actor: ActorContext = ActorDep,
):
    released = await service.release(
        request.product_id, request.quantity, actor, cart_session_id=request.cart_session_id
    )
    if not released:
        return JSONResponse(
            status_code=409,
            content={
                "success": False,
                "message": "释放数量超过已预占数量",
                "code": "RELEASE_REJECTED",
            },
        )
    return OperationResponse(success=True, message="释放成功", data=True)


@router.post("/cleanup/manual", response_model=CleanupResponse)
async def manual_cleanup(
    request: CleanupRequest = Body(CleanupRequest()),
    service: ReservationService = ReservationServiceDep,
):
    """手动触发过期预占清理（直接调用 Service）"""
    count = await service.cleanup_expired_reservations(request.batch_size)
    return CleanupResponse(success=True, message="手动清理完成", cleaned_count=count)


@router.post("/cleanup/celery", response_model=CeleryTaskResponse)
async def celery_cleanup(request: CleanupRequest = Body(CleanupRequest())):
    """触发 Celery 异步清理任务"""
    task = celery_cleanup_task.delay(request.batch_size)
    return CeleryTaskResponse(success=True, message="已提交异步清理任务", task_id=task.id)

from contextlib import asynccontextmanager
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from sqlalchemy import text

from pos_stock.core.exceptions import (
    CartNotFoundError,
    CartStateError,
    DuplicateStockError,
    EmptyCartError,
    InsufficientStockError,
    InvariantViolationError,
    InventoryError,
    LockAcquisitionError,
    ReservationLostError,
    SaleValidationError,
    StockNotFoundError,
    UnderpaidSaleError,
)
from pos_stock.db.session import engine
from pos_stock.core.redis import async_redis
from pos_stock.routers import cart_router, stock_router

import uvicorn

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# 业务异常到 HTTP 状态码的映射（按继承顺序匹配，子类在前）
ERROR_STATUS = [
    (CartNotFoundError, 404),
    (StockNotFoundError, 404),
    (LockAcquisitionError, 429),
    (InvariantViolationError, 400),
    (UnderpaidSaleError, 400),
    (EmptyCartError, 400),
    (DuplicateStockError, 409),
    (InsufficientStockError, 409),
    (ReservationLostError, 409),
    (SaleValidationError, 409),
    (CartStateError, 409),
]


def status_for(exc: InventoryError) -> int:
    for exc_type, status_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 应用启动时的初始化
    logger.info("Starting application...")

    # 数据库连接检查
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error("❌ Database connection failed: %s", e)
        raise

    # Redis 连接检查（发票号序列依赖 Redis，不可用时使用备用编号）
    try:
        await async_redis.ping()
        logger.info("✅ Redis connected successfully")
    except Exception as e:
        logger.warning(f"⚠️  Redis connection failed: {e}")
        logger.warning("⚠️  Invoice numbers will fall back to timestamp numbering")

    yield

    # 应用关闭时的清理
    logger.info("Shutting down application...")
    await engine.dispose()

# 创建 FastAPI 应用
app = FastAPI(
    title="收银库存服务 API",
    description="收银台库存预占账本与销售结算服务，支持多收银台并发且防超卖",
    version="1.0.0",
    lifespan=lifespan
)

# 添加 CORS 中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境中应该指定具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由
app.include_router(stock_router.router, prefix="/api/v1")
app.include_router(cart_router.router, prefix="/api/v1")

# 全局异常处理
@app.exception_handler(InventoryError)
async def inventory_exception_handler(request: Request, exc: InventoryError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"Inventory error: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Inventory error: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "message": exc.message,
            "code": exc.code
        }
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc}")
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "请求参数验证失败",
            "details": jsonable_errors(exc)
        }
    )

def jsonable_errors(exc: RequestValidationError):
    # ctx 中可能带有异常对象，转成字符串后才能序列化
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.error(f"HTTP error: {exc.status_code} - {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail
        }
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unexpected error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "服务器内部错误"
        }
    )

# 健康检查端点
@app.get("/health")
async def health_check():
    """健康检查接口"""
    return {
        "status": "healthy",
        "service": "pos-stock-service",
        "version": "1.0.0"
    }

@app.get("/")
async def read_root():
    """API 根路径"""
    return {
        "message": "欢迎使用收银库存服务",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    uvicorn.run(
        "pos_stock.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )

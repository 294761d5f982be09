from .base import Base
from .session import engine


async def init_db(bind=engine):
    # 导入模型以注册到 metadata
    import pos_stock.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

# Export for convenience
__all__ = ["Base", "engine", "init_db"]

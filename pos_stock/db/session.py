from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from pos_stock.core.config import settings


def build_engine(url: str = None) -> AsyncEngine:
    url = url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, connect_args={"timeout": 30})
    return create_async_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        autoflush=False,
        expire_on_commit=False,
    )


engine = build_engine()

AsyncSessionLocal = build_session_factory(engine)

import os
from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # 数据库配置
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "123456")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "pos")
    # 直接指定连接串时优先使用（例如测试用 sqlite+aiosqlite）
    DATABASE_URL: Optional[str] = None

    # Redis 配置
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_HOSTS: Optional[str] = None

    # 锁配置
    USE_REDLOCK: bool = False
    LOCK_TTL_MS: int = 10000

    # 库存策略
    ALLOW_OVERSELL: bool = False
    # 预占租期（分钟），为空表示预占不过期
    RESERVATION_LEASE_MINUTES: Optional[int] = None
    RELEASE_RETRY_ATTEMPTS: int = 3
    CLEANUP_BATCH_SIZE: int = 500

    # 收银配置
    DEFAULT_TAX_RATE: Decimal = Decimal("0")
    INVOICE_PREFIX: str = "FT"
    ALLOW_ANONYMOUS_INVOICE: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://"
            f"{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

settings = Settings()

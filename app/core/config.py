import os
from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


class Settings(BaseSettings):
    # 数据库配置
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "postgres")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "123456")
    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = int(os.getenv("POSTGRES_PORT", "5432"))
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "mydb")
    DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")

    # Redis 配置
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    # Redlock 多实例地址，逗号分隔；为空时使用 REDIS_HOST
    REDIS_HOSTS: str = os.getenv("REDIS_HOSTS", "")
    STOCK_CACHE_TTL_SECONDS: int = int(os.getenv("STOCK_CACHE_TTL_SECONDS", "300"))
    CHECKOUT_LOCK_TTL_MS: int = int(os.getenv("CHECKOUT_LOCK_TTL_MS", "10000"))

    # 计价规则
    FREE_SHIPPING_THRESHOLD: Decimal = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "500"))
    SHIPPING_FEE: Decimal = Decimal(os.getenv("SHIPPING_FEE", "50"))
    COD_SURCHARGE: Decimal = Decimal(os.getenv("COD_SURCHARGE", "40"))

    # 支付网关配置
    PAYMENT_KEY_ID: str = os.getenv("PAYMENT_KEY_ID", "")
    PAYMENT_KEY_SECRET: str = os.getenv("PAYMENT_KEY_SECRET", "")
    PAYMENT_API_URL: str = os.getenv("PAYMENT_API_URL", "https://api.razorpay.com/v1")
    PAYMENT_CURRENCY: str = os.getenv("PAYMENT_CURRENCY", "INR")
    PAYMENT_TIMEOUT_SECONDS: float = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "5"))

    # 订单配置
    ORDER_NUMBER_MAX_ATTEMPTS: int = int(os.getenv("ORDER_NUMBER_MAX_ATTEMPTS", "5"))
    # 未支付在线订单的保留时长（分钟），不设置则一直保留库存
    PENDING_ONLINE_ORDER_TTL_MINUTES: Optional[int] = _optional_int("PENDING_ONLINE_ORDER_TTL_MINUTES")

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

    def redis_url(self, db: Optional[int] = None) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB if db is None else db}"


settings = Settings()

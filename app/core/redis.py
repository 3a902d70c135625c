"""Redis 客户端：库存缓存与下单分布式锁"""

from typing import List, Optional

from redis import Redis
from redis.asyncio import Redis as AsyncRedis
from redlock import Redlock

from app.core.config import settings

# 库存缓存客户端（同步供服务层使用，异步只在启动时探活）
redis_client = Redis.from_url(settings.redis_url(), decode_responses=True)
async_redis = AsyncRedis.from_url(settings.redis_url(), decode_responses=True)


def redlock_servers(hosts: Optional[str] = None) -> List[dict]:
    """解析 Redlock 实例列表，未配置多实例时只用缓存所在的实例"""
    if hosts is None:
        hosts = settings.REDIS_HOSTS
    names = [host.strip() for host in hosts.split(",") if host.strip()]
    return [
        {"host": name, "port": settings.REDIS_PORT, "db": settings.REDIS_DB}
        for name in names or [settings.REDIS_HOST]
    ]


# 下单锁只尝试一次，拿不到直接返回 429，不排队等待
redlock = Redlock(redlock_servers(), retry_count=1)

__all__ = [
    "redis_client",
    "async_redis",
    "redlock",
    "redlock_servers",
]

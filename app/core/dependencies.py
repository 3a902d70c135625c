"""依赖注入配置模块"""

import logging
from typing import Optional

from fastapi import Depends, Header
from redis.exceptions import RedisError

# 数据库会话依赖
from app.db.session import SessionLocal
from sqlalchemy.orm import Session

# Redis 依赖
from app.core.redis import redis_client, redlock
from app.core.payment import payment_provider
from app.core.exceptions import Forbidden, Unauthorized
from app.core.security import CurrentUser, Role

from app.services.cart_service import CartService
from app.services.inventory_service import InventoryService
from app.services.order_query_service import OrderQueryService
from app.services.order_service import OrderService
from app.services.payment_provider import PaymentProvider
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


def get_redis():
    """获取同步 Redis 客户端，不可用时返回 None（服务降级为直查数据库）"""
    try:
        redis_client.ping()
        return redis_client
    except (RedisError, OSError) as e:
        logger.warning(f"Redis 不可用: {e}")
        return None

def get_redlock(redis=Depends(get_redis)):
    """获取 Redlock 分布式锁实例，Redis 不可用或无服务器配置时返回 None"""
    if redis is None or not redlock.servers:
        return None
    return redlock

def get_db() -> Session:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_payment_provider() -> PaymentProvider:
    """获取进程级支付网关客户端"""
    return payment_provider


def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> CurrentUser:
    """读取网关透传的用户身份"""
    if not x_user_id:
        raise Unauthorized()
    try:
        role = Role((x_user_role or Role.USER.value).upper())
    except ValueError:
        raise Unauthorized("无效的用户角色")
    return CurrentUser(id=x_user_id, role=role)

def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """仅管理员可访问"""
    if not user.is_admin:
        raise Forbidden()
    return user


def get_inventory_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
) -> InventoryService:
    """获取库存服务实例（依赖注入）"""
    return InventoryService(db=db, redis=redis)

def get_cart_service(db: Session = Depends(get_db)) -> CartService:
    return CartService(db=db)

def get_order_query_service(db: Session = Depends(get_db)) -> OrderQueryService:
    return OrderQueryService(db=db)

def get_order_service(
    db: Session = Depends(get_db),
    inventory: InventoryService = Depends(get_inventory_service),
    carts: CartService = Depends(get_cart_service),
    provider: PaymentProvider = Depends(get_payment_provider),
    rlock = Depends(get_redlock),
) -> OrderService:
    """获取订单服务实例（依赖注入）"""
    return OrderService(db=db, inventory=inventory, carts=carts, provider=provider, rlock=rlock)

def get_payment_service(
    db: Session = Depends(get_db),
    carts: CartService = Depends(get_cart_service),
    queries: OrderQueryService = Depends(get_order_query_service),
    provider: PaymentProvider = Depends(get_payment_provider),
) -> PaymentService:
    """获取支付对账服务实例（依赖注入）"""
    return PaymentService(db=db, carts=carts, queries=queries, provider=provider)


# 常用的依赖注入别名
DatabaseDep = Depends(get_db)
CurrentUserDep = Depends(get_current_user)
AdminDep = Depends(require_admin)
InventoryServiceDep = Depends(get_inventory_service)
CartServiceDep = Depends(get_cart_service)
OrderServiceDep = Depends(get_order_service)
OrderQueryServiceDep = Depends(get_order_query_service)
PaymentServiceDep = Depends(get_payment_service)

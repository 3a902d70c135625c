"""订单相关的 Celery 任务"""

from celery_app import app
from app.db.session import SessionLocal
from app.services.cart_service import CartService
from app.services.inventory_service import InventoryService
from app.services.order_service import OrderService
from app.core.redis import redis_client
import logging

logger = logging.getLogger(__name__)

@app.task(name='tasks.orders.expire_pending_online_orders')
def expire_pending_online_orders(batch_size: int = 500):
    """取消超过支付截止时间的在线订单并归还库存

    Args:
        batch_size: 批处理大小，默认500条

    Returns:
        回收结果描述
    """
    db = SessionLocal()
    try:
        service = OrderService(
            db,
            inventory=InventoryService(db, redis_client),
            carts=CartService(db),
        )
        count = service.expire_pending_online_orders(batch_size)
        result = f"成功取消 {count} 个过期未支付订单"
        logger.info(result)
        return result
    except Exception as e:
        logger.error(f"回收过期订单任务执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()

# 导出任务
__all__ = [
    'expire_pending_online_orders',
]

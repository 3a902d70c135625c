"""Celery 配置文件"""

from celery import Celery

from app.core.config import settings

# 创建 Celery 应用实例
app = Celery('order_worker', include=['tasks.order_tasks'])

# 配置 Redis 作为 broker 和 backend
app.conf.broker_url = settings.redis_url(1)
app.conf.result_backend = settings.redis_url(2)

# 任务序列化配置
app.conf.task_serializer = 'json'
app.conf.result_serializer = 'json'
app.conf.accept_content = ['json']

# 时区配置
app.conf.timezone = 'Asia/Kolkata'
app.conf.enable_utc = True

# 任务路由配置
app.conf.task_routes = {
    'tasks.orders.*': {'queue': 'orders'},
}

# 配置了支付超时才定时回收过期订单
if settings.PENDING_ONLINE_ORDER_TTL_MINUTES:
    app.conf.beat_schedule = {
        'expire-pending-online-orders': {
            'task': 'tasks.orders.expire_pending_online_orders',
            'schedule': 60.0,
            'args': (500,),
        },
    }

# Worker 配置
app.conf.worker_prefetch_multiplier = 1
app.conf.task_acks_late = True

# 导出应用实例
__all__ = ['app']

"""支付网关客户端配置模块"""

from app.services.payment_provider import PaymentProvider

# 进程级共享客户端，启动时创建，关闭应用时释放连接池
payment_provider = PaymentProvider.from_settings()

__all__ = ["payment_provider"]

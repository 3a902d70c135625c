"""测试配置和 fixtures"""
import os

# 测试环境不连接 PostgreSQL，必须在导入 app 之前设置
os.environ.setdefault("DATABASE_URL", "sqlite://")

import json
from decimal import Decimal
from itertools import count

import httpx
import pytest
from unittest.mock import Mock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from redis import Redis
from redlock import Redlock

from app.db.base import Base
import app.models  # noqa: F401
from app.models import Product, ProductStock
from app.services.cart_service import CartService
from app.services.inventory_service import InventoryService
from app.services.order_query_service import OrderQueryService
from app.services.order_service import OrderService
from app.services.payment_provider import PaymentProvider, compute_signature
from app.services.payment_service import PaymentService

PAYMENT_SECRET = "test_secret"


@pytest.fixture
def db_session():
    """SQLite 内存数据库会话（同一连接，便于多个会话共享数据）"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    db = SessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def mock_db_session():
    """纯 Mock 的数据库会话，只验证调用"""
    return Mock()


@pytest.fixture
def mock_redis():
    """创建模拟 Redis 客户端"""
    redis_mock = Mock(spec=Redis)
    redis_mock.get.return_value = None
    redis_mock.setex.return_value = True
    redis_mock.delete.return_value = 1
    redis_mock.mget.return_value = [None, None]
    redis_mock.pipeline.return_value = Mock()
    return redis_mock


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def make_product(db_session):
    """商品工厂：创建商品及其库存台账"""
    sequence = count(1)

    def _make(name="测试商品", price="100.00", stock=10):
        product = Product(
            sku=f"SKU{next(sequence):04d}",
            name=name,
            price=Decimal(price),
        )
        db_session.add(product)
        db_session.flush()
        db_session.add(ProductStock(product_id=product.id, available_stock=stock))
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def gateway_requests():
    """记录发往支付网关的请求"""
    return []


@pytest.fixture
def payment_provider(gateway_requests):
    """使用 httpx MockTransport 的支付网关客户端"""
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        gateway_requests.append(body)
        return httpx.Response(200, json={
            "id": f"order_{len(gateway_requests):03d}",
            "amount": body["amount"],
            "currency": body["currency"],
            "receipt": body["receipt"],
        })

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = PaymentProvider(
        key_id="rzp_test_key",
        key_secret=PAYMENT_SECRET,
        base_url="https://gateway.test/v1",
        client=client,
    )
    yield provider
    provider.close()


@pytest.fixture
def failing_provider():
    """网关超时的支付客户端"""
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    provider = PaymentProvider(
        key_id="rzp_test_key",
        key_secret=PAYMENT_SECRET,
        base_url="https://gateway.test/v1",
        client=client,
    )
    yield provider
    provider.close()


@pytest.fixture
def inventory_service(db_session):
    return InventoryService(db_session)


@pytest.fixture
def cart_service(db_session):
    return CartService(db_session)


@pytest.fixture
def order_query_service(db_session):
    return OrderQueryService(db_session)


@pytest.fixture
def order_service(db_session, inventory_service, cart_service, payment_provider):
    return OrderService(
        db_session,
        inventory=inventory_service,
        carts=cart_service,
        provider=payment_provider,
    )


@pytest.fixture
def payment_service(db_session, cart_service, order_query_service, payment_provider):
    return PaymentService(
        db_session,
        carts=cart_service,
        queries=order_query_service,
        provider=payment_provider,
    )


@pytest.fixture
def address():
    """示例收货地址"""
    return {
        "full_name": "张三",
        "phone": "9876543210",
        "address_line1": "MG Road 1",
        "address_line2": None,
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
        "country": "India",
    }


@pytest.fixture
def sign(payment_provider):
    """按网关规则为回调参数签名"""
    def _sign(provider_order_ref, provider_payment_ref):
        return compute_signature(payment_provider.key_secret, provider_order_ref, provider_payment_ref)
    return _sign


@pytest.fixture
def client(db_session, payment_provider):
    """FastAPI 测试客户端：使用测试数据库，关闭 Redis，使用模拟支付网关"""
    from fastapi.testclient import TestClient
    from app.main import app as fastapi_app
    from app.core.dependencies import get_db, get_payment_provider, get_redis

    fastapi_app.dependency_overrides[get_db] = lambda: db_session
    fastapi_app.dependency_overrides[get_redis] = lambda: None
    fastapi_app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    try:
        yield TestClient(fastapi_app)
    finally:
        fastapi_app.dependency_overrides.clear()

"""订单服务单元测试"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from unittest.mock import Mock
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.exceptions import (
    CheckoutInProgress,
    DuplicateOrderNumber,
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
)
from app.models import (
    InventoryReservation,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    ProductStock,
    ReservationStatus,
)
from app.services import order_service as order_service_module
from app.services.order_service import OrderService, new_order_number


def stock_of(db, product_id):
    return db.execute(
        select(ProductStock.available_stock).where(ProductStock.product_id == product_id)
    ).scalar_one()


def order_count(db):
    return db.execute(select(func.count()).select_from(Order)).scalar_one()


class TestPlaceOrder:
    """下单流程测试"""

    def test_cod_order(self, db_session, order_service, cart_service, make_product,
                       address, gateway_requests):
        """货到付款：加运费和手续费，直接进入 PROCESSING 并清空购物车"""
        product = make_product(price="200.00", stock=5)
        cart_service.add_item("user-1", product.id, 1)

        placed = order_service.place_order("user-1", address, address, PaymentMethod.COD)
        order = placed.order

        assert order.subtotal == Decimal("200.00")
        assert order.shipping_fee == Decimal("50.00")
        assert order.cod_fee == Decimal("40.00")
        assert order.total_amount == Decimal("290.00")
        assert order.status == OrderStatus.PROCESSING
        assert order.payment_status == PaymentStatus.PENDING
        assert placed.payment is None
        assert gateway_requests == []
        assert cart_service.get_cart("user-1").items == []
        assert stock_of(db_session, product.id) == 4

    def test_online_order(self, db_session, order_service, cart_service, make_product,
                          address, gateway_requests):
        """在线支付：订单保持 PENDING，库存已预占，购物车保留到支付成功"""
        product = make_product(price="600.00", stock=5)
        cart_service.add_item("user-1", product.id, 1)

        placed = order_service.place_order("user-1", address, address, PaymentMethod.ONLINE)
        order = placed.order

        assert order.total_amount == Decimal("600.00")
        assert order.shipping_fee == Decimal("0.00")
        assert order.cod_fee == Decimal("0.00")
        assert order.status == OrderStatus.PENDING
        assert order.payment_status == PaymentStatus.PENDING
        assert placed.payment.id == "order_001"
        assert placed.payment.amount == 60000
        assert order.provider_order_id == "order_001"
        assert gateway_requests[0]["receipt"] == order.order_number
        assert len(cart_service.get_cart("user-1").items) == 1
        assert stock_of(db_session, product.id) == 4

    def test_order_snapshot(self, order_service, cart_service, make_product, address):
        """订单明细和地址在创建时固化"""
        product = make_product(name="机械键盘", price="150.00", stock=5)
        cart_service.add_item("user-1", product.id, 2)
        billing = dict(address, city="Mumbai")

        order = order_service.place_order("user-1", address, billing, PaymentMethod.COD, notes="工作日送货").order

        assert order.order_number.startswith("ORD")
        assert order.shipping_address["city"] == "Bengaluru"
        assert order.billing_address["city"] == "Mumbai"
        assert order.notes == "工作日送货"
        assert len(order.items) == 1
        item = order.items[0]
        assert (item.product_id, item.product_name, item.quantity, item.price) == (
            product.id, "机械键盘", 2, Decimal("150.00")
        )

    def test_uses_price_captured_in_cart(self, db_session, order_service, cart_service,
                                         make_product, address):
        """商品改价后下单仍按加购价计算"""
        product = make_product(price="100.00", stock=5)
        cart_service.add_item("user-1", product.id, 2)
        product.price = Decimal("180.00")
        db_session.commit()

        order = order_service.place_order("user-1", address, address, PaymentMethod.ONLINE).order

        assert order.items[0].price == Decimal("100.00")
        assert order.subtotal == Decimal("200.00")
        assert order.total_amount == Decimal("250.00")

    def test_total_fixed_after_price_change(self, db_session, order_service, cart_service,
                                            make_product, address):
        """下单后商品改价，已保存的订单金额和明细不变"""
        product = make_product(price="100.00", stock=5)
        cart_service.add_item("user-1", product.id, 2)
        order_id = order_service.place_order("user-1", address, address, PaymentMethod.COD).order.id

        product.price = Decimal("999.00")
        db_session.commit()
        db_session.expire_all()
        stored = db_session.get(Order, order_id)

        assert stored.total_amount == Decimal("290.00")
        assert stored.subtotal == Decimal("200.00")
        assert stored.items[0].price == Decimal("100.00")

    def test_provider_failure_still_creates_order(self, db_session, inventory_service,
                                                  cart_service, failing_provider,
                                                  make_product, address):
        """支付网关不可用时订单照常创建，只是没有支付单"""
        product = make_product(price="100.00", stock=5)
        cart_service.add_item("user-1", product.id, 1)
        service = OrderService(db_session, inventory_service, cart_service, provider=failing_provider)

        placed = service.place_order("user-1", address, address, PaymentMethod.ONLINE)

        assert placed.payment is None
        assert placed.order.provider_order_id is None
        assert placed.order.status == OrderStatus.PENDING
        assert stock_of(db_session, product.id) == 4

    def test_without_provider(self, db_session, inventory_service, cart_service,
                              make_product, address):
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        service = OrderService(db_session, inventory_service, cart_service)

        placed = service.place_order("user-1", address, address, PaymentMethod.ONLINE)

        assert placed.payment is None
        assert order_count(db_session) == 1

    def test_empty_cart(self, db_session, order_service, address):
        with pytest.raises(EmptyCart) as exc_info:
            order_service.place_order("user-1", address, address, PaymentMethod.COD)

        assert exc_info.value.code == "EMPTY_CART"
        assert order_count(db_session) == 0

    def test_insufficient_stock_at_checkout(self, db_session, order_service, cart_service,
                                            inventory_service, make_product, address):
        """加购后库存被别人买走，下单时重新校验"""
        product = make_product(name="演唱会门票", stock=3)
        cart_service.add_item("user-1", product.id, 3)
        inventory_service.reserve_stock(product.id, 2, order_id=999)

        with pytest.raises(InsufficientStock) as exc_info:
            order_service.place_order("user-1", address, address, PaymentMethod.COD)

        assert "演唱会门票" in exc_info.value.detail
        assert order_count(db_session) == 0
        assert stock_of(db_session, product.id) == 1
        assert len(cart_service.get_cart("user-1").items) == 1

    def test_reservation_failure_rolls_back_order(self, db_session, order_service, cart_service,
                                                  make_product, address):
        """预占失败时订单不落库，也不会留下部分预占"""
        first = make_product(stock=5)
        second = make_product(name="缺货商品", stock=5)
        cart_service.add_item("user-1", first.id, 1)
        cart_service.add_item("user-1", second.id, 1)
        order_service.inventory.reserve_items = Mock(side_effect=InsufficientStock("缺货商品"))

        with pytest.raises(InsufficientStock):
            order_service.place_order("user-1", address, address, PaymentMethod.COD)

        assert order_count(db_session) == 0
        assert db_session.execute(select(InventoryReservation)).first() is None
        assert stock_of(db_session, first.id) == 5
        assert len(cart_service.get_cart("user-1").items) == 2

    def test_checkout_lock_held(self, db_session, inventory_service, cart_service,
                                mock_redlock, make_product, address):
        """同一用户正在下单时拒绝并发请求"""
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        mock_redlock.lock.return_value = False
        service = OrderService(db_session, inventory_service, cart_service, rlock=mock_redlock)

        with pytest.raises(CheckoutInProgress) as exc_info:
            service.place_order("user-1", address, address, PaymentMethod.COD)

        assert exc_info.value.status_code == 429
        assert order_count(db_session) == 0

    def test_checkout_lock_released(self, db_session, inventory_service, cart_service,
                                    mock_redlock, make_product, address):
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        service = OrderService(db_session, inventory_service, cart_service, rlock=mock_redlock)

        service.place_order("user-1", address, address, PaymentMethod.COD)

        mock_redlock.lock.assert_called_once_with("lock:checkout:user-1", settings.CHECKOUT_LOCK_TTL_MS)
        mock_redlock.unlock.assert_called_once_with(mock_redlock.lock.return_value)


class TestOrderNumber:
    """订单号生成测试"""

    def test_format(self):
        number = new_order_number()
        assert number.startswith("ORD")
        assert len(number) == 15
        assert number[3:].isdigit()

    def test_regenerates_on_existing_number(self, db_session, order_service, cart_service,
                                            make_product, address, monkeypatch):
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        monkeypatch.setattr(order_service_module, "new_order_number", lambda: "ORD000000000001")
        first = order_service.place_order("user-1", address, address, PaymentMethod.COD).order

        numbers = iter(["ORD000000000001", "ORD000000000002"])
        monkeypatch.setattr(order_service_module, "new_order_number", lambda: next(numbers))
        cart_service.add_item("user-1", product.id, 1)
        second = order_service.place_order("user-1", address, address, PaymentMethod.COD).order

        assert first.order_number == "ORD000000000001"
        assert second.order_number == "ORD000000000002"

    def test_unique_constraint_retry(self, db_session, order_service, cart_service,
                                     make_product, address, monkeypatch):
        """并发拿到同一个订单号时，靠唯一约束兜底并重新生成"""
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        monkeypatch.setattr(order_service_module, "new_order_number", lambda: "ORD000000000001")
        order_service.place_order("user-1", address, address, PaymentMethod.COD)

        cart_service.add_item("user-1", product.id, 1)
        order_service._generate_order_number = Mock(side_effect=["ORD000000000001", "ORD000000000009"])
        order = order_service.place_order("user-1", address, address, PaymentMethod.COD).order

        assert order.order_number == "ORD000000000009"
        assert order_count(db_session) == 2
        assert stock_of(db_session, product.id) == 3

    def test_gives_up_after_max_attempts(self, db_session, order_service, cart_service,
                                         make_product, address, monkeypatch):
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        monkeypatch.setattr(order_service_module, "new_order_number", lambda: "ORD000000000001")
        order_service.place_order("user-1", address, address, PaymentMethod.COD)
        cart_service.add_item("user-1", product.id, 1)

        with pytest.raises(DuplicateOrderNumber):
            order_service.place_order("user-1", address, address, PaymentMethod.COD)

        assert order_count(db_session) == 1

    def test_other_integrity_errors_not_retried(self, db_session, order_service, cart_service,
                                                make_product, address, monkeypatch):
        """非订单号的约束错误直接抛出，不重新生成订单号"""
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        order_service._generate_order_number = Mock(return_value="ORD000000000007")
        error = IntegrityError("INSERT INTO orders", {}, Exception("FOREIGN KEY constraint failed"))
        monkeypatch.setattr(db_session, "flush", Mock(side_effect=error))

        with pytest.raises(IntegrityError):
            order_service.place_order("user-1", address, address, PaymentMethod.COD)

        assert order_service._generate_order_number.call_count == 1


class TestUpdateOrderStatus:
    """后台状态流转测试"""

    @pytest.fixture
    def cod_order(self, order_service, cart_service, make_product, address):
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 2)
        return order_service.place_order("user-1", address, address, PaymentMethod.COD).order

    @pytest.fixture
    def online_order(self, order_service, cart_service, make_product, address):
        product = make_product(stock=5)
        cart_service.add_item("user-2", product.id, 1)
        return order_service.place_order("user-2", address, address, PaymentMethod.ONLINE).order

    def test_forward_transitions(self, order_service, cod_order):
        order = order_service.update_order_status(cod_order.id, status=OrderStatus.SHIPPED)
        assert order.status == OrderStatus.SHIPPED

        order = order_service.update_order_status(
            cod_order.id, status=OrderStatus.DELIVERED, payment_status=PaymentStatus.PAID
        )
        assert order.status == OrderStatus.DELIVERED
        assert order.payment_status == PaymentStatus.PAID
        assert order.paid_at is not None

    def test_same_value_is_noop(self, order_service, cod_order):
        order = order_service.update_order_status(
            cod_order.id, status=OrderStatus.PROCESSING, payment_status=PaymentStatus.PENDING
        )
        assert order.status == OrderStatus.PROCESSING
        assert order.payment_status == PaymentStatus.PENDING

    def test_skipping_states_rejected(self, order_service, online_order):
        with pytest.raises(InvalidTransition) as exc_info:
            order_service.update_order_status(online_order.id, status=OrderStatus.DELIVERED)

        assert exc_info.value.status_code == 409
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_terminal_state_rejected(self, order_service, cod_order):
        order_service.update_order_status(cod_order.id, status=OrderStatus.CANCELLED)

        with pytest.raises(InvalidTransition):
            order_service.update_order_status(cod_order.id, status=OrderStatus.PROCESSING)

    def test_refund_requires_paid(self, order_service, cod_order):
        with pytest.raises(InvalidTransition):
            order_service.update_order_status(cod_order.id, payment_status=PaymentStatus.REFUNDED)

    def test_cancel_releases_stock(self, db_session, order_service, cod_order):
        product_id = cod_order.items[0].product_id
        assert stock_of(db_session, product_id) == 3

        order = order_service.update_order_status(cod_order.id, status=OrderStatus.CANCELLED)

        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_at is not None
        assert stock_of(db_session, product_id) == 5
        statuses = db_session.execute(
            select(InventoryReservation.status).where(InventoryReservation.order_id == cod_order.id)
        ).scalars().all()
        assert statuses == [ReservationStatus.RELEASED]

    def test_invalid_transition_keeps_notes_unchanged(self, order_service, cod_order):
        with pytest.raises(InvalidTransition):
            order_service.update_order_status(
                cod_order.id, status=OrderStatus.PENDING, notes="不应写入"
            )
        assert order_service.db.get(Order, cod_order.id).notes is None

    def test_update_notes(self, order_service, cod_order):
        order = order_service.update_order_status(cod_order.id, notes="已电话确认")
        assert order.notes == "已电话确认"

    def test_order_not_found(self, order_service):
        with pytest.raises(OrderNotFound):
            order_service.update_order_status(12345, status=OrderStatus.SHIPPED)


class TestExpireOrders:
    """过期未支付订单回收测试"""

    def test_no_ttl_holds_stock(self, db_session, order_service, cart_service, make_product,
                                address, monkeypatch):
        """未配置支付时限时，待支付订单一直保留库存"""
        monkeypatch.setattr(settings, "PENDING_ONLINE_ORDER_TTL_MINUTES", None)
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        order = order_service.place_order("user-1", address, address, PaymentMethod.ONLINE).order

        future = datetime.now(timezone.utc) + timedelta(days=30)

        assert order.payment_expires_at is None
        assert order_service.expire_pending_online_orders(now=future) == 0
        assert stock_of(db_session, product.id) == 4

    def test_expired_orders_cancelled(self, db_session, order_service, cart_service,
                                      make_product, address, monkeypatch):
        monkeypatch.setattr(settings, "PENDING_ONLINE_ORDER_TTL_MINUTES", 30)
        product = make_product(stock=5)
        cart_service.add_item("user-1", product.id, 1)
        online = order_service.place_order("user-1", address, address, PaymentMethod.ONLINE).order
        cart_service.add_item("user-2", product.id, 1)
        cod = order_service.place_order("user-2", address, address, PaymentMethod.COD).order
        assert stock_of(db_session, product.id) == 3

        assert order_service.expire_pending_online_orders(now=datetime.now(timezone.utc)) == 0

        later = datetime.now(timezone.utc) + timedelta(minutes=31)
        assert order_service.count_expired_online_orders(now=later) == 1
        assert order_service.expire_pending_online_orders(now=later) == 1

        db_session.refresh(online)
        db_session.refresh(cod)
        assert online.status == OrderStatus.CANCELLED
        assert cod.status == OrderStatus.PROCESSING
        assert stock_of(db_session, product.id) == 4
        assert order_service.expire_pending_online_orders(now=later) == 0

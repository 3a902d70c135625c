"""订单服务实现：购物车转订单、预占库存、后台状态流转、过期订单回收"""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
import random
import time
from typing import List, Optional

from redlock import Redlock
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    CheckoutInProgress,
    Conflict,
    DuplicateOrderNumber,
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
    ProviderUnavailable,
)
from app.models import (
    Cart,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product,
)
from app.services.cart_service import CartService
from app.services.inventory_service import InventoryService
from app.services.payment_provider import PaymentProvider, ProviderOrder
from app.services.pricing import OrderLine, OrderTotals, calculate_totals

logger = logging.getLogger(__name__)


# 订单状态只能向前推进，DELIVERED / CANCELLED 为终态
STATUS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PAID},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}

UNPAID_STATUSES = (PaymentStatus.PENDING, PaymentStatus.FAILED)


@dataclass
class PlacedOrder:
    order: Order
    payment: Optional[ProviderOrder] = None


def new_order_number() -> str:
    """ORD + 毫秒时间戳后8位 + 4位随机数"""
    timestamp = str(int(time.time() * 1000))[-8:]
    return f"ORD{timestamp}{random.randint(0, 9999):04d}"


def _is_order_number_conflict(error: IntegrityError) -> bool:
    """PostgreSQL 按约束名判断，SQLite 只能看错误信息"""
    diag = getattr(error.orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return "order_number" in constraint
    return "order_number" in str(error.orig)


class OrderService:
    """订单核心服务类"""

    def __init__(
        self,
        db: Session,
        inventory: InventoryService,
        carts: CartService,
        provider: Optional[PaymentProvider] = None,
        rlock: Optional[Redlock] = None,
    ):
        self.db = db
        self.inventory = inventory
        self.carts = carts
        self.provider = provider
        self.rlock = rlock

    def place_order(
        self,
        user_id: str,
        shipping_address: dict,
        billing_address: dict,
        payment_method: PaymentMethod,
        notes: Optional[str] = None,
    ) -> PlacedOrder:
        """购物车下单

        两种支付方式都在下单时预占库存。货到付款直接进入 PROCESSING 并清空购物车；
        在线支付保持 PENDING，购物车保留到支付校验成功。
        """
        with self._checkout_lock(user_id):
            return self._place_order(user_id, shipping_address, billing_address, payment_method, notes)

    def update_order_status(
        self,
        order_id: int,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """后台修改订单状态

        目标值与当前值相同时视为无操作直接返回；
        不在流转表中的变更抛出 InvalidTransition；
        取消订单时在同一事务内归还库存。
        """
        order = self.db.get(Order, order_id)
        if order is None:
            raise OrderNotFound()

        now = datetime.now(timezone.utc)
        criteria = [Order.id == order_id]
        values = {}

        if status is not None and status != order.status:
            if status not in STATUS_TRANSITIONS[order.status]:
                raise InvalidTransition("status", order.status, status)
            criteria.append(Order.status == order.status)
            values["status"] = status
            if status == OrderStatus.CANCELLED:
                values["cancelled_at"] = now

        if payment_status is not None and payment_status != order.payment_status:
            if payment_status not in PAYMENT_TRANSITIONS[order.payment_status]:
                raise InvalidTransition("payment_status", order.payment_status, payment_status)
            criteria.append(Order.payment_status == order.payment_status)
            values["payment_status"] = payment_status
            if payment_status == PaymentStatus.PAID and order.paid_at is None:
                values["paid_at"] = now

        if notes is not None and notes != order.notes:
            values["notes"] = notes

        if not values:
            logger.info(f"订单状态无变化: order_id={order_id}")
            return order

        released = 0
        try:
            result = self.db.execute(
                update(Order)
                .where(*criteria)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise Conflict()

            if values.get("status") == OrderStatus.CANCELLED:
                released = self.inventory.release_order(order_id, commit=False, source="admin")

            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"修改订单状态失败: order_id={order_id}, error={e}")
            raise

        self.db.refresh(order)
        if released:
            self.inventory.invalidate_cache(item.product_id for item in order.items)
        logger.info(
            f"修改订单状态成功: order_id={order_id}, "
            f"status={order.status.value}, payment_status={order.payment_status.value}"
        )
        return order

    def expire_pending_online_orders(self, batch_size: int = 500, now: Optional[datetime] = None) -> int:
        """取消超过支付截止时间仍未支付的在线订单并归还库存

        只处理下单时写入了 payment_expires_at 的订单；
        未配置 PENDING_ONLINE_ORDER_TTL_MINUTES 时订单不带截止时间，库存一直保留。

        Returns:
            本次取消的订单数
        """
        now = now or datetime.now(timezone.utc)
        total_cancelled = 0

        while True:
            try:
                # skip_locked 防止多个 worker 重复处理同一批订单
                orders = self.db.execute(
                    self._expired_query(now)
                    .order_by(Order.id)
                    .limit(batch_size)
                    .with_for_update(skip_locked=True)
                ).scalars().all()

                if not orders:
                    break

                cancelled_items = []
                for order in orders:
                    result = self.db.execute(
                        update(Order)
                        .where(
                            Order.id == order.id,
                            Order.status == OrderStatus.PENDING,
                            Order.payment_status.in_(UNPAID_STATUSES),
                        )
                        .values(status=OrderStatus.CANCELLED, cancelled_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        continue
                    self.inventory.release_order(order.id, commit=False, source="expiry_job")
                    cancelled_items.extend(item.product_id for item in order.items)
                    total_cancelled += 1

                self.db.commit()
                self.inventory.invalidate_cache(cancelled_items)
                logger.info(f"已完成批次回收，累计取消 {total_cancelled} 个过期订单")

                if len(orders) < batch_size:
                    break
            except Exception as e:
                self.db.rollback()
                logger.error(f"回收过期订单失败: {e}")
                raise

        logger.info(f"过期订单回收完成，共取消 {total_cancelled} 个订单")
        return total_cancelled

    def count_expired_online_orders(self, now: Optional[datetime] = None) -> int:
        """统计待回收的过期订单数量（试运行用）"""
        now = now or datetime.now(timezone.utc)
        subquery = self._expired_query(now).subquery()
        return self.db.execute(select(func.count()).select_from(subquery)).scalar_one()

    def _place_order(self, user_id, shipping_address, billing_address, payment_method, notes) -> PlacedOrder:
        cart = self.carts.get_cart(user_id)
        if not cart.items:
            raise EmptyCart()

        lines = self._snapshot_lines(cart)
        totals = calculate_totals(lines, payment_method)
        order_number = self._generate_order_number()

        payment = None
        if payment_method == PaymentMethod.ONLINE:
            payment = self._request_payment_intent(totals, order_number)

        order = self._persist_order(
            user_id, order_number, lines, totals, payment_method, payment,
            shipping_address, billing_address, notes,
        )

        try:
            self.inventory.reserve_items(order.id, lines, commit=False)
            if payment_method == PaymentMethod.COD:
                order.status = OrderStatus.PROCESSING
                self.carts.clear(user_id, commit=False)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"下单失败，已回滚: user_id={user_id}, order_number={order.order_number}, error={e}")
            raise

        self.inventory.invalidate_cache(line.product_id for line in lines)
        logger.info(
            f"下单成功: order_number={order.order_number}, user_id={user_id}, "
            f"method={payment_method.value}, total={totals.total_amount}"
        )
        return PlacedOrder(order=order, payment=payment)

    def _snapshot_lines(self, cart: Cart) -> List[OrderLine]:
        """按当前库存重新校验购物车，并固化为订单明细（价格沿用加购价）"""
        product_ids = [item.product_id for item in cart.items]
        products = {
            product.id: product
            for product in self.db.execute(
                select(Product)
                .where(Product.id.in_(product_ids))
                .execution_options(populate_existing=True)
            ).unique().scalars()
        }

        lines = []
        for item in cart.items:
            product = products.get(item.product_id)
            if product is None or product.available_stock < item.quantity:
                name = product.name if product else str(item.product_id)
                logger.info(f"下单库存校验失败: product={name}, requested={item.quantity}")
                raise InsufficientStock(name)
            lines.append(OrderLine(
                product_id=item.product_id,
                product_name=product.name,
                quantity=item.quantity,
                price=item.price,
            ))
        return lines

    def _generate_order_number(self) -> str:
        """生成未被占用的订单号，冲突则重新生成"""
        for _ in range(settings.ORDER_NUMBER_MAX_ATTEMPTS):
            candidate = new_order_number()
            taken = self.db.execute(
                select(Order.id).where(Order.order_number == candidate)
            ).first()
            if taken is None:
                return candidate
            logger.warning(f"订单号已存在，重新生成: {candidate}")
        raise DuplicateOrderNumber()

    def _request_payment_intent(self, totals: OrderTotals, order_number: str) -> Optional[ProviderOrder]:
        """请求支付网关创建支付单，失败时不阻断下单"""
        if self.provider is None:
            logger.warning(f"未配置支付网关，订单将无支付单: {order_number}")
            return None
        try:
            return self.provider.create_payment_intent(
                totals.total_amount, settings.PAYMENT_CURRENCY, order_number
            )
        except ProviderUnavailable as e:
            logger.warning(f"支付网关不可用，订单继续创建: order_number={order_number}, error={e.detail}")
            return None

    def _persist_order(self, user_id, order_number, lines, totals, payment_method, payment,
                       shipping_address, billing_address, notes) -> Order:
        expires_at = None
        if payment_method == PaymentMethod.ONLINE and settings.PENDING_ONLINE_ORDER_TTL_MINUTES:
            expires_at = datetime.now(timezone.utc) + timedelta(
                minutes=settings.PENDING_ONLINE_ORDER_TTL_MINUTES
            )

        for _ in range(settings.ORDER_NUMBER_MAX_ATTEMPTS):
            order = Order(
                order_number=order_number,
                user_id=user_id,
                subtotal=totals.subtotal,
                shipping_fee=totals.shipping_fee,
                cod_fee=totals.cod_fee,
                total_amount=totals.total_amount,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.PENDING,
                payment_method=payment_method,
                provider_order_id=payment.id if payment else None,
                shipping_address=shipping_address,
                billing_address=billing_address,
                notes=notes,
                payment_expires_at=expires_at,
                items=[
                    OrderItem(
                        product_id=line.product_id,
                        product_name=line.product_name,
                        quantity=line.quantity,
                        price=line.price,
                    )
                    for line in lines
                ],
            )
            self.db.add(order)
            try:
                self.db.flush()
                return order
            except IntegrityError as e:
                self.db.rollback()
                # 只有订单号唯一约束冲突才重试，其他约束错误直接抛出
                if not _is_order_number_conflict(e):
                    raise
                logger.warning(f"订单号冲突，重新生成: {order_number}")
                order_number = self._generate_order_number()
        raise DuplicateOrderNumber()

    def _expired_query(self, now: datetime):
        return select(Order).where(
            Order.payment_method == PaymentMethod.ONLINE,
            Order.status == OrderStatus.PENDING,
            Order.payment_status.in_(UNPAID_STATUSES),
            Order.payment_expires_at.is_not(None),
            Order.payment_expires_at <= now,
        )

    @contextmanager
    def _checkout_lock(self, user_id: str):
        """同一用户同一时间只允许一个下单请求"""
        if not self.rlock:
            yield
            return

        lock = self.rlock.lock(f"lock:checkout:{user_id}", settings.CHECKOUT_LOCK_TTL_MS)
        if not lock:
            raise CheckoutInProgress()
        try:
            yield
        finally:
            self.rlock.unlock(lock)

"""支付对账服务：校验在线支付回调，并把订单推进到已支付"""

from datetime import datetime, timezone
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import Conflict, InvalidSignature
from app.core.security import CurrentUser
from app.models import Order, OrderStatus, PaymentMethod, PaymentStatus
from app.services.cart_service import CartService
from app.services.order_query_service import OrderQueryService
from app.services.order_service import UNPAID_STATUSES
from app.services.payment_provider import PaymentProvider, ProviderOrder

logger = logging.getLogger(__name__)


class PaymentService:
    """支付对账服务类"""

    def __init__(
        self,
        db: Session,
        carts: CartService,
        queries: OrderQueryService,
        provider: PaymentProvider,
    ):
        self.db = db
        self.carts = carts
        self.queries = queries
        self.provider = provider

    def verify_online_payment(
        self,
        user: CurrentUser,
        order_id: int,
        provider_order_ref: str,
        provider_payment_ref: str,
        signature: str,
    ) -> Order:
        """校验支付回调并确认订单

        签名不匹配时订单保持不变。同一回调重复提交时，
        第二次看到订单已是 PAID 直接返回，不会再次修改订单或清空购物车。
        """
        order = self.queries.get_order(user, order_id)

        if not self.provider.verify_signature(provider_order_ref, provider_payment_ref, signature):
            logger.warning(
                f"支付签名校验失败，疑似篡改: order_id={order_id}, user_id={user.id}, "
                f"provider_order_ref={provider_order_ref}"
            )
            raise InvalidSignature()

        if order.payment_method != PaymentMethod.ONLINE:
            raise Conflict("该订单不是在线支付订单")

        # 回调只能确认本订单自己的支付单，没有支付单时必须先重新发起支付
        if order.provider_order_id is None or order.provider_order_id != provider_order_ref:
            logger.warning(
                f"支付单号与订单不匹配，疑似篡改: order_id={order_id}, "
                f"expected={order.provider_order_id}, got={provider_order_ref}"
            )
            raise InvalidSignature()

        if order.payment_status == PaymentStatus.PAID:
            logger.info(f"订单已支付，忽略重复校验: order_id={order_id}")
            return order

        try:
            # 条件更新：只有仍处于待支付的订单会被推进，并发请求只有一个能成功
            result = self.db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PENDING,
                    Order.payment_status.in_(UNPAID_STATUSES),
                    Order.provider_order_id == provider_order_ref,
                )
                .values(
                    payment_status=PaymentStatus.PAID,
                    status=OrderStatus.PROCESSING,
                    provider_payment_id=provider_payment_ref,
                    paid_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                self.db.rollback()
                self.db.refresh(order)
                if order.payment_status == PaymentStatus.PAID:
                    logger.info(f"订单已被并发请求确认支付: order_id={order_id}")
                    return order
                logger.error(
                    f"订单状态不允许确认支付，需人工退款处理: order_id={order_id}, "
                    f"status={order.status.value}, payment_id={provider_payment_ref}"
                )
                raise Conflict("订单状态已变更，无法确认支付，请联系客服")

            self.carts.clear(order.user_id, commit=False)
            self.db.commit()
        except Conflict:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"确认支付失败: order_id={order_id}, error={e}")
            raise

        self.db.refresh(order)
        logger.info(f"支付校验成功: order_id={order_id}, payment_id={provider_payment_ref}")
        return order

    def create_payment_intent_for_order(self, user: CurrentUser, order_id: int) -> ProviderOrder:
        """为待支付的在线订单重新创建支付单（下单时网关不可用或用户重试支付）"""
        order = self.queries.get_order(user, order_id)

        if (
            order.payment_method != PaymentMethod.ONLINE
            or order.status != OrderStatus.PENDING
            or order.payment_status not in UNPAID_STATUSES
        ):
            raise Conflict("该订单无需支付")

        # 网关不可用时直接返回 503，这里没有可降级的路径
        payment = self.provider.create_payment_intent(
            order.total_amount, settings.PAYMENT_CURRENCY, order.order_number
        )

        try:
            result = self.db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PENDING,
                    Order.payment_status.in_(UNPAID_STATUSES),
                )
                .values(provider_order_id=payment.id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise Conflict()
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"保存支付单失败: order_id={order_id}, error={e}")
            raise

        self.db.refresh(order)
        logger.info(f"重新创建支付单: order_id={order_id}, provider_order_id={payment.id}")
        return payment

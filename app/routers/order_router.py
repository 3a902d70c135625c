"""订单 API 路由（下单、支付校验、订单查询）"""

from fastapi import APIRouter, HTTPException, Path, Query
from typing import Optional
import logging

from app.core.config import settings
from app.core.dependencies import (
    CurrentUserDep,
    OrderQueryServiceDep,
    OrderServiceDep,
    PaymentServiceDep,
)
from app.core.security import CurrentUser
from app.schemas.base import PaginationInfo
from app.schemas.order import (
    OrderListResponse,
    OrderResponse,
    OrderSchema,
    PaymentIntentResponse,
    PaymentIntentSchema,
    PlaceOrderRequest,
    PlaceOrderResponse,
    VerifyPaymentRequest,
)
from app.services.order_query_service import OrderQueryService
from app.services.order_service import OrderService
from app.services.payment_provider import ProviderOrder
from app.services.payment_service import PaymentService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/orders",
    tags=["订单"],
    responses={
        400: {"description": "购物车为空、库存不足或支付校验失败"},
        401: {"description": "未登录"},
        404: {"description": "订单不存在"},
        409: {"description": "订单状态冲突"},
        429: {"description": "订单正在处理中"},
        500: {"description": "服务器内部错误"}
    }
)


def _payment_payload(payment: Optional[ProviderOrder]) -> Optional[PaymentIntentSchema]:
    if payment is None:
        return None
    return PaymentIntentSchema(
        id=payment.id,
        amount=payment.amount,
        currency=payment.currency,
        key_id=settings.PAYMENT_KEY_ID,
    )


def _pagination(total: int, page: int, limit: int) -> PaginationInfo:
    return PaginationInfo(total=total, page=page, limit=limit, pages=(total + limit - 1) // limit)


@router.post(
    "",
    response_model=PlaceOrderResponse,
    summary="下单",
    description="""将购物车转为订单。

    **特点：**
    - 下单即预占库存（在线支付与货到付款相同）
    - 货到付款：订单直接进入 PROCESSING，清空购物车
    - 在线支付：订单保持 PENDING，支付校验成功后才清空购物车
    - 支付网关不可用时仍然创建订单，可稍后重新发起支付
    """,
)
def place_order(
    request: PlaceOrderRequest,
    user: CurrentUser = CurrentUserDep,
    service: OrderService = OrderServiceDep,
):
    try:
        billing = request.billing_address or request.shipping_address
        placed = service.place_order(
            user.id,
            request.shipping_address.model_dump(),
            billing.model_dump(),
            request.payment_method,
            request.notes,
        )
        return PlaceOrderResponse(
            success=True,
            message="下单成功",
            order=OrderSchema.model_validate(placed.order),
            payment=_payment_payload(placed.payment),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"下单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("", response_model=OrderListResponse, summary="我的订单")
async def list_orders(
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(10, ge=1, le=100, description="每页条数"),
    user: CurrentUser = CurrentUserDep,
    queries: OrderQueryService = OrderQueryServiceDep,
):
    """普通用户只返回自己的订单，管理员返回全部"""
    try:
        orders, total = queries.list_orders(user, page=page, limit=limit)
        return OrderListResponse(
            success=True,
            orders=[OrderSchema.model_validate(order) for order in orders],
            pagination=_pagination(total, page, limit),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询订单列表失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/verify-payment",
    response_model=OrderResponse,
    summary="在线支付校验",
    description="""校验支付网关回调签名并确认订单。

    **幂等：** 同一回调重复提交返回相同结果，不会重复修改订单。
    """,
)
async def verify_payment(
    request: VerifyPaymentRequest,
    user: CurrentUser = CurrentUserDep,
    service: PaymentService = PaymentServiceDep,
):
    try:
        order = service.verify_online_payment(
            user,
            request.order_id,
            request.provider_order_id,
            request.provider_payment_id,
            request.signature,
        )
        return OrderResponse(success=True, message="支付成功", order=OrderSchema.model_validate(order))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"支付校验失败: {str(e)}")
        raise HTTPException(status_code=500, detail="支付校验失败，请联系客服")


@router.get("/{order_id}", response_model=OrderResponse, summary="订单详情")
async def get_order(
    order_id: int = Path(..., gt=0, description="订单ID"),
    user: CurrentUser = CurrentUserDep,
    queries: OrderQueryService = OrderQueryServiceDep,
):
    try:
        order = queries.get_order(user, order_id)
        return OrderResponse(success=True, order=OrderSchema.model_validate(order))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询订单失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/{order_id}/payment-intent",
    response_model=PaymentIntentResponse,
    summary="重新发起支付",
)
def create_payment_intent(
    order_id: int = Path(..., gt=0, description="订单ID"),
    user: CurrentUser = CurrentUserDep,
    service: PaymentService = PaymentServiceDep,
):
    """为待支付的在线订单重新创建支付单"""
    try:
        payment = service.create_payment_intent_for_order(user, order_id)
        return PaymentIntentResponse(success=True, payment=_payment_payload(payment))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"重新发起支付失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

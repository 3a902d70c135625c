"""订单接口的请求与响应模型"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.orders import OrderStatus, PaymentMethod, PaymentStatus
from app.schemas.base import BaseResponse, ORMSchema, PaginationInfo


class AddressSchema(BaseModel):
    """地址快照"""
    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=5, max_length=20)
    address_line1: str = Field(..., min_length=1, max_length=255)
    address_line2: Optional[str] = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str = Field(..., min_length=3, max_length=12)
    country: str = Field("India", max_length=100)


class PlaceOrderRequest(BaseModel):
    """下单请求"""
    shipping_address: AddressSchema
    billing_address: Optional[AddressSchema] = Field(
        None,
        description="不传则与收货地址相同"
    )
    payment_method: PaymentMethod = Field(
        PaymentMethod.ONLINE,
        description="支付方式：ONLINE 在线支付 / COD 货到付款"
    )
    notes: Optional[str] = Field(None, max_length=500)


class VerifyPaymentRequest(BaseModel):
    """支付回调校验请求"""
    order_id: int = Field(..., gt=0, description="订单ID")
    provider_order_id: str = Field(..., min_length=1, max_length=64, description="网关订单号")
    provider_payment_id: str = Field(..., min_length=1, max_length=64, description="网关支付流水号")
    signature: str = Field(..., min_length=1, max_length=256, description="网关签名")


class UpdateOrderStatusRequest(BaseModel):
    """后台修改订单状态请求（只能是枚举中的值）"""
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    notes: Optional[str] = Field(None, max_length=500)


class OrderItemSchema(ORMSchema):
    product_id: int
    product_name: str
    quantity: int
    price: Decimal


class OrderSchema(ORMSchema):
    id: int
    order_number: str
    user_id: str
    items: List[OrderItemSchema] = []
    subtotal: Decimal
    shipping_fee: Decimal
    cod_fee: Decimal
    total_amount: Decimal
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    provider_order_id: Optional[str] = None
    provider_payment_id: Optional[str] = None
    shipping_address: dict
    billing_address: dict
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentIntentSchema(BaseModel):
    """前端拉起支付所需的信息"""
    id: str = Field(..., description="网关订单号")
    amount: int = Field(..., description="金额（最小货币单位）")
    currency: str
    key_id: str = Field(..., description="网关公钥ID")


class OrderResponse(BaseResponse):
    order: OrderSchema


class PlaceOrderResponse(OrderResponse):
    payment: Optional[PaymentIntentSchema] = None


class PaymentIntentResponse(BaseResponse):
    payment: PaymentIntentSchema


class OrderListResponse(BaseResponse):
    orders: List[OrderSchema]
    pagination: PaginationInfo


class ExpireOrdersResponse(BaseResponse):
    """过期订单回收响应"""
    cancelled_count: Optional[int] = Field(None, ge=0, description="取消的订单数量")

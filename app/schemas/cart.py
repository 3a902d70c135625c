"""购物车接口的请求与响应模型"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.base import BaseResponse, ORMSchema


class AddCartItemRequest(BaseModel):
    """加入购物车请求"""
    product_id: int = Field(..., gt=0, description="商品ID", examples=[1])
    quantity: int = Field(1, ge=1, description="购买数量", examples=[2])


class UpdateCartItemRequest(BaseModel):
    """修改数量请求"""
    quantity: int = Field(..., ge=1, description="购买数量", examples=[3])


class CartProductSchema(ORMSchema):
    id: int
    name: str
    price: Decimal
    available_stock: int


class CartItemSchema(ORMSchema):
    product_id: int
    quantity: int
    price: Decimal = Field(..., description="加购时价格")
    product: Optional[CartProductSchema] = None


class CartSchema(BaseModel):
    user_id: str
    items: List[CartItemSchema] = []
    subtotal: Decimal
    item_count: int


class CartResponse(BaseResponse):
    cart: CartSchema

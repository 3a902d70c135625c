"""购物车 API 路由"""

from fastapi import APIRouter, HTTPException, Path
import logging

from app.core.dependencies import CartServiceDep, CurrentUserDep
from app.core.security import CurrentUser
from app.models import Cart
from app.schemas.base import BaseResponse
from app.schemas.cart import (
    AddCartItemRequest,
    CartResponse,
    CartSchema,
    CartItemSchema,
    UpdateCartItemRequest,
)
from app.services.cart_service import CartService

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/cart",
    tags=["购物车"],
    responses={
        400: {"description": "数量非法或库存不足"},
        401: {"description": "未登录"},
        404: {"description": "商品不存在"},
        500: {"description": "服务器内部错误"}
    }
)


def _cart_payload(cart: Cart) -> CartSchema:
    summary = CartService.summarize(cart)
    return CartSchema(
        user_id=cart.user_id,
        items=[CartItemSchema.model_validate(item) for item in cart.items],
        subtotal=summary["subtotal"],
        item_count=summary["item_count"],
    )


@router.get("", response_model=CartResponse, summary="查看购物车")
async def get_cart(
    user: CurrentUser = CurrentUserDep,
    service: CartService = CartServiceDep,
):
    """查看购物车，首次访问时自动创建"""
    try:
        cart = service.get_cart(user.id)
        return CartResponse(success=True, cart=_cart_payload(cart))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询购物车失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post(
    "/items",
    response_model=CartResponse,
    summary="加入购物车",
    description="""将商品加入购物车。

    **规则：**
    - 数量必须大于等于 1
    - 已在购物车中的商品累加数量
    - 价格按加入时的售价记录，下单时沿用
    """,
)
async def add_item(
    request: AddCartItemRequest,
    user: CurrentUser = CurrentUserDep,
    service: CartService = CartServiceDep,
):
    try:
        cart = service.add_item(user.id, request.product_id, request.quantity)
        return CartResponse(success=True, message="已加入购物车", cart=_cart_payload(cart))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"加入购物车失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/items/{product_id}", response_model=CartResponse, summary="修改购物车数量")
async def update_item(
    request: UpdateCartItemRequest,
    product_id: int = Path(..., gt=0, description="商品ID"),
    user: CurrentUser = CurrentUserDep,
    service: CartService = CartServiceDep,
):
    try:
        cart = service.set_quantity(user.id, product_id, request.quantity)
        return CartResponse(success=True, message="数量已更新", cart=_cart_payload(cart))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"修改购物车数量失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/items/{product_id}", response_model=CartResponse, summary="移出购物车")
async def remove_item(
    product_id: int = Path(..., gt=0, description="商品ID"),
    user: CurrentUser = CurrentUserDep,
    service: CartService = CartServiceDep,
):
    try:
        cart = service.remove_item(user.id, product_id)
        return CartResponse(success=True, message="已移出购物车", cart=_cart_payload(cart))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"移出购物车失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("", response_model=BaseResponse, summary="清空购物车")
async def clear_cart(
    user: CurrentUser = CurrentUserDep,
    service: CartService = CartServiceDep,
):
    try:
        service.clear(user.id)
        return BaseResponse(success=True, message="购物车已清空")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"清空购物车失败: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

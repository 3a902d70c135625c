"""订单生命周期的业务异常

所有异常都继承 HTTPException，服务层直接抛出，
路由层透传，由 app.main 中的全局处理器统一格式化。
"""

from typing import Optional

from fastapi import HTTPException


class OrderLifecycleError(HTTPException):
    """业务异常基类"""
    status_code = 400
    code = "ORDER_ERROR"
    message = "请求处理失败"

    def __init__(self, message: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=message or self.message)


class EmptyCart(OrderLifecycleError):
    code = "EMPTY_CART"
    message = "购物车为空"


class InsufficientStock(OrderLifecycleError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, product_name: Optional[str] = None):
        self.product_name = product_name
        message = f"库存不足: {product_name}" if product_name else "库存不足"
        super().__init__(message)


class InvalidQuantity(OrderLifecycleError):
    code = "INVALID_QUANTITY"
    message = "商品数量必须大于等于 1"


class InvalidSignature(OrderLifecycleError):
    # 不向客户端回显任何签名细节
    code = "INVALID_SIGNATURE"
    message = "支付校验失败，请联系客服"


class ProductNotFound(OrderLifecycleError):
    status_code = 404
    code = "PRODUCT_NOT_FOUND"
    message = "商品不存在"


class CartItemNotFound(OrderLifecycleError):
    status_code = 404
    code = "CART_ITEM_NOT_FOUND"
    message = "购物车中没有该商品"


class OrderNotFound(OrderLifecycleError):
    status_code = 404
    code = "ORDER_NOT_FOUND"
    message = "订单不存在"


class Unauthorized(OrderLifecycleError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "未登录或登录已失效"


class Forbidden(OrderLifecycleError):
    status_code = 403
    code = "FORBIDDEN"
    message = "没有权限执行该操作"


class Conflict(OrderLifecycleError):
    status_code = 409
    code = "CONFLICT"
    message = "订单状态已被其他请求修改"


class CheckoutInProgress(Conflict):
    status_code = 429
    code = "CHECKOUT_IN_PROGRESS"
    message = "订单正在处理中，请稍后重试"


class InvalidTransition(Conflict):
    code = "INVALID_TRANSITION"

    def __init__(self, field: str, current, target):
        self.field = field
        self.current = current
        self.target = target
        super().__init__(f"不允许的状态变更: {field} {current.value} -> {target.value}")


class ProviderUnavailable(OrderLifecycleError):
    """支付网关不可用（下单时被吸收，仅在重新发起支付时返回给调用方）"""
    status_code = 503
    code = "PROVIDER_UNAVAILABLE"
    message = "支付网关暂不可用，请稍后重试或选择货到付款"


class DuplicateOrderNumber(OrderLifecycleError):
    """订单号冲突，内部重试用"""
    status_code = 500
    code = "DUPLICATE_ORDER_NUMBER"
    message = "订单号生成失败，请稍后重试"

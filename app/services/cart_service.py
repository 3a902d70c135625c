"""购物车服务实现"""

from decimal import Decimal
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    CartItemNotFound,
    InsufficientStock,
    InvalidQuantity,
    ProductNotFound,
)
from app.models import Cart, CartItem, Product

logger = logging.getLogger(__name__)


class CartService:
    """购物车服务类

    每个用户只有一个购物车，首次读取或加购时创建。
    单用户低并发，按最后写入为准。
    """

    def __init__(self, db: Session):
        self.db = db

    def get_cart(self, user_id: str) -> Cart:
        """获取用户购物车，不存在则创建"""
        cart = self._find_cart(user_id)
        if cart is not None:
            return cart

        cart = Cart(user_id=user_id)
        self.db.add(cart)
        try:
            self.db.commit()
            logger.info(f"创建购物车: user_id={user_id}")
        except IntegrityError:
            # 同一用户并发创建，使用已存在的那一个
            self.db.rollback()
            cart = self._find_cart(user_id)
        return cart

    def add_item(self, user_id: str, product_id: int, quantity: int = 1) -> Cart:
        """加入购物车：已有该商品则累加数量，价格取加购时的售价"""
        if quantity is None or quantity < 1:
            raise InvalidQuantity()

        cart = self.get_cart(user_id)
        product = self._get_product(product_id)
        item = self._find_item(cart, product_id)

        requested = quantity + (item.quantity if item else 0)
        if product.available_stock < requested:
            raise InsufficientStock(product.name)

        try:
            if item:
                item.quantity = requested
            else:
                cart.items.append(CartItem(
                    product_id=product_id,
                    quantity=quantity,
                    price=product.price,
                ))
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"加入购物车失败: user_id={user_id}, product_id={product_id}, error={e}")
            raise

        logger.info(f"加入购物车: user_id={user_id}, product_id={product_id}, quantity={requested}")
        return cart

    def set_quantity(self, user_id: str, product_id: int, quantity: int) -> Cart:
        """修改购物车中商品数量"""
        if quantity is None or quantity < 1:
            raise InvalidQuantity()

        cart = self.get_cart(user_id)
        item = self._find_item(cart, product_id)
        if item is None:
            raise CartItemNotFound()

        product = self._get_product(product_id)
        if product.available_stock < quantity:
            raise InsufficientStock(product.name)

        item.quantity = quantity
        self.db.commit()
        logger.info(f"修改购物车数量: user_id={user_id}, product_id={product_id}, quantity={quantity}")
        return cart

    def remove_item(self, user_id: str, product_id: int) -> Cart:
        """移除购物车中的商品，不存在时不报错"""
        cart = self.get_cart(user_id)
        item = self._find_item(cart, product_id)
        if item is not None:
            cart.items.remove(item)
            self.db.commit()
            logger.info(f"移出购物车: user_id={user_id}, product_id={product_id}")
        return cart

    def clear(self, user_id: str, commit: bool = True) -> int:
        """清空购物车，返回删除的行数"""
        cart = self._find_cart(user_id)
        if cart is None or not cart.items:
            return 0

        count = len(cart.items)
        cart.items.clear()
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        logger.info(f"清空购物车: user_id={user_id}, items={count}")
        return count

    @staticmethod
    def summarize(cart: Cart) -> dict:
        """购物车小计与件数"""
        subtotal = sum((item.price * item.quantity for item in cart.items), Decimal("0"))
        item_count = sum(item.quantity for item in cart.items)
        return {"subtotal": subtotal, "item_count": item_count}

    def _find_cart(self, user_id: str):
        return self.db.execute(
            select(Cart).where(Cart.user_id == user_id)
        ).scalar_one_or_none()

    @staticmethod
    def _find_item(cart: Cart, product_id: int):
        for item in cart.items:
            if item.product_id == product_id:
                return item
        return None

    def _get_product(self, product_id: int) -> Product:
        # 库存要读最新值，不走会话缓存
        product = self.db.get(Product, product_id, populate_existing=True)
        if product is None:
            raise ProductNotFound()
        return product

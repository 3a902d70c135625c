"""订单查询服务：普通用户只能看到自己的订单，管理员可以看到全部"""

from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.exceptions import OrderNotFound
from app.core.security import CurrentUser
from app.models import Order, OrderStatus, PaymentStatus


class OrderQueryService:

    def __init__(self, db: Session):
        self.db = db

    def list_orders(
        self,
        user: CurrentUser,
        page: int = 1,
        limit: int = 10,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
    ) -> Tuple[List[Order], int]:
        """分页查询订单，按创建时间倒序"""
        criteria = self._ownership(user)
        if status is not None:
            criteria.append(Order.status == status)
        if payment_status is not None:
            criteria.append(Order.payment_status == payment_status)

        total = self.db.execute(
            select(func.count()).select_from(Order).where(*criteria)
        ).scalar_one()

        orders = self.db.execute(
            select(Order)
            .where(*criteria)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return list(orders), total

    def get_order(self, user: CurrentUser, order_id: int) -> Order:
        """查询单个订单，他人的订单按不存在处理，不暴露是否存在"""
        order = self.db.execute(
            select(Order).where(Order.id == order_id, *self._ownership(user))
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFound()
        return order

    @staticmethod
    def _ownership(user: CurrentUser) -> list:
        if user.is_admin:
            return []
        return [Order.user_id == user.id]

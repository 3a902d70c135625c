"""库存台账服务实现"""

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional
import logging
from redis import Redis
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions import InsufficientStock, InvalidQuantity, ProductNotFound
from app.models import (
    Product,
    ProductStock,
    InventoryReservation,
    ReservationStatus,
    InventoryLog,
    ChangeType,
)
from app.services.pricing import OrderLine

logger = logging.getLogger(__name__)


def stock_cache_key(product_id: int) -> str:
    return f"stock:available:{product_id}"


class InventoryService:
    """库存核心服务类

    扣减只走一条带下限的条件更新（available_stock >= quantity），
    不做先查后改，因此并发下单不会超卖。
    """

    def __init__(self, db: Session, redis: Optional[Redis] = None):
        self.db = db
        self.redis = redis

    def get_product_stock(self, product_id: int) -> int:
        """查询商品可用库存（带缓存）"""
        cache_key = stock_cache_key(product_id)

        # 先查缓存
        cached = self._cache_get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for product {product_id}")
            return int(cached)

        # 缓存未命中，查询数据库
        stmt = select(ProductStock).where(ProductStock.product_id == product_id)
        stock = self.db.execute(stmt).scalar_one_or_none()
        available = stock.available_stock if stock else 0

        self._cache_set(cache_key, available)
        return available

    def batch_get_stocks(self, product_ids: List[int]) -> dict:
        """批量获取库存（带缓存优化）"""
        if not product_ids:
            return {}

        results = {}
        uncached_ids = list(product_ids)

        if self.redis:
            try:
                cached_values = self.redis.mget([stock_cache_key(pid) for pid in product_ids])
                uncached_ids = []
                for pid, cached in zip(product_ids, cached_values):
                    if cached is not None:
                        results[pid] = int(cached)
                    else:
                        uncached_ids.append(pid)
            except RedisError as e:
                logger.warning(f"批量读取库存缓存失败，直接查询数据库: {e}")
                uncached_ids = list(product_ids)

        if uncached_ids:
            stocks = self.db.execute(
                select(ProductStock).where(ProductStock.product_id.in_(uncached_ids))
            ).scalars().all()
            stock_map = {stock.product_id: stock.available_stock for stock in stocks}

            pipe = self.redis.pipeline() if self.redis else None
            for pid in uncached_ids:
                available = stock_map.get(pid, 0)
                results[pid] = available
                if pipe is not None:
                    pipe.setex(stock_cache_key(pid), settings.STOCK_CACHE_TTL_SECONDS, available)

            if pipe is not None:
                try:
                    pipe.execute()
                except RedisError as e:
                    logger.warning(f"批量写入库存缓存失败: {e}")

        return results

    def reserve_stock(self, product_id: int, quantity: int, order_id: int,
                      commit: bool = True, source: str = "checkout") -> bool:
        """预占单个商品库存，库存不足抛出 InsufficientStock"""
        try:
            self._reserve(product_id, quantity, order_id, source)
            if commit:
                self.db.commit()
                self.invalidate_cache([product_id])
            logger.info(f"预占库存成功: order_id={order_id}, product_id={product_id}, quantity={quantity}")
            return True
        except Exception as e:
            if commit:
                self.db.rollback()
            logger.error(f"预占库存失败: order_id={order_id}, product_id={product_id}, error={e}")
            raise

    def reserve_items(self, order_id: int, lines: Iterable[OrderLine],
                      commit: bool = True, source: str = "checkout") -> bool:
        """一次性预占订单全部明细，任何一行失败则整体回滚"""
        # 按商品ID排序加锁，避免不同订单交叉等待
        ordered = sorted(lines, key=lambda line: line.product_id)
        try:
            for line in ordered:
                self._reserve(line.product_id, line.quantity, order_id, source)
            if commit:
                self.db.commit()
                self.invalidate_cache([line.product_id for line in ordered])
            logger.info(f"订单预占库存成功: order_id={order_id}, lines={len(ordered)}")
            return True
        except Exception as e:
            if commit:
                self.db.rollback()
            logger.error(f"订单预占库存失败: order_id={order_id}, error={e}")
            raise

    def release_stock(self, product_id: int, quantity: int, order_id: Optional[int] = None,
                      commit: bool = True, source: str = "admin") -> bool:
        """归还库存，不做库存校验"""
        try:
            self._increment(product_id, quantity, order_id, source)
            if commit:
                self.db.commit()
                self.invalidate_cache([product_id])
            logger.info(f"归还库存成功: order_id={order_id}, product_id={product_id}, quantity={quantity}")
            return True
        except Exception as e:
            if commit:
                self.db.rollback()
            logger.error(f"归还库存失败: product_id={product_id}, error={e}")
            raise

    def release_order(self, order_id: int, commit: bool = True, source: str = "admin") -> int:
        """归还订单预占的全部库存（订单取消时调用）

        每条预占记录通过条件更新从 RESERVED 切到 RELEASED，
        重复调用不会二次归还。

        Returns:
            本次归还的明细条数
        """
        try:
            reservations = self.db.execute(
                select(InventoryReservation)
                .where(
                    InventoryReservation.order_id == order_id,
                    InventoryReservation.status == ReservationStatus.RESERVED,
                )
                .order_by(InventoryReservation.product_id)
            ).scalars().all()

            released_ids = []
            for reservation in reservations:
                flipped = self.db.execute(
                    update(InventoryReservation)
                    .where(
                        InventoryReservation.id == reservation.id,
                        InventoryReservation.status == ReservationStatus.RESERVED,
                    )
                    .values(status=ReservationStatus.RELEASED)
                    .execution_options(synchronize_session=False)
                )
                if flipped.rowcount == 0:
                    # 已被并发请求释放
                    continue
                self._increment(reservation.product_id, reservation.quantity, order_id, source)
                released_ids.append(reservation.product_id)

            if commit:
                self.db.commit()
                self.invalidate_cache(released_ids)
            logger.info(f"释放订单库存: order_id={order_id}, released={len(released_ids)}")
            return len(released_ids)
        except Exception as e:
            if commit:
                self.db.rollback()
            logger.error(f"释放订单库存失败: order_id={order_id}, error={e}")
            raise

    def invalidate_cache(self, product_ids: Iterable[int]) -> None:
        """失效库存缓存，写操作提交后调用"""
        if not self.redis:
            return
        for product_id in set(product_ids):
            try:
                self.redis.delete(stock_cache_key(product_id))
                logger.debug(f"Cache invalidated for product {product_id}")
            except RedisError as e:
                logger.warning(f"失效库存缓存失败: product_id={product_id}, error={e}")

    def _reserve(self, product_id: int, quantity: int, order_id: int, source: str) -> None:
        if quantity < 1:
            raise InvalidQuantity()

        # 原子条件扣减：库存不足时不更新任何行
        result = self.db.execute(
            update(ProductStock)
            .where(
                ProductStock.product_id == product_id,
                ProductStock.available_stock >= quantity,
            )
            .values(available_stock=ProductStock.available_stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            product = self.db.get(Product, product_id)
            if product is None:
                raise ProductNotFound()
            raise InsufficientStock(product.name)

        after = self._current_stock(product_id)
        self.db.add(InventoryReservation(
            order_id=order_id,
            product_id=product_id,
            quantity=quantity,
            status=ReservationStatus.RESERVED,
        ))
        self.db.add(InventoryLog(
            product_id=product_id,
            order_id=order_id,
            change_type=ChangeType.RESERVE,
            quantity=-quantity,
            before_available=after + quantity,
            after_available=after,
            operator=f"order_{order_id}",
            source=source,
        ))

    def _increment(self, product_id: int, quantity: int, order_id: Optional[int], source: str) -> None:
        result = self.db.execute(
            update(ProductStock)
            .where(ProductStock.product_id == product_id)
            .values(available_stock=ProductStock.available_stock + quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ProductNotFound()

        after = self._current_stock(product_id)
        self.db.add(InventoryLog(
            product_id=product_id,
            order_id=order_id,
            change_type=ChangeType.RELEASE,
            quantity=quantity,
            before_available=after - quantity,
            after_available=after,
            operator=f"order_{order_id}" if order_id else None,
            source=source,
        ))

    def _current_stock(self, product_id: int) -> int:
        # 条件更新绕过了会话，顺便刷新会话中已加载的库存对象
        stock = self.db.execute(
            select(ProductStock)
            .where(ProductStock.product_id == product_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        return stock.available_stock

    def _cache_get(self, key: str):
        if not self.redis:
            return None
        try:
            return self.redis.get(key)
        except RedisError as e:
            logger.warning(f"读取库存缓存失败: {e}")
            return None

    def _cache_set(self, key: str, value: int) -> None:
        if not self.redis:
            return
        try:
            self.redis.setex(key, settings.STOCK_CACHE_TTL_SECONDS, value)
            logger.debug(f"Cache set for {key}: {value}")
        except RedisError as e:
            logger.warning(f"写入库存缓存失败: {e}")

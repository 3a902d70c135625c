import enum

from sqlalchemy import (
    Column,
    BigInteger,
    Integer,
    TIMESTAMP,
    func,
    Enum,
    UniqueConstraint,
    Index,
    ForeignKey,
)
from app.db.base import Base, BigIntPK



# 1️ 预占状态枚举

class ReservationStatus(str, enum.Enum):
    RESERVED = "RESERVED"     # 已预占（随订单创建扣减）
    RELEASED = "RELEASED"     # 已释放（订单取消归还）



# 2️ 预占表：记录每个订单从库存台账扣减了多少，取消时按此归还

class InventoryReservation(Base):
    __tablename__ = "inventory_reservations"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="订单ID",
    )

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="商品ID",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="预占数量",
    )

    status = Column(
        Enum(
            ReservationStatus,
            name="reservation_status_type",
        ),
        nullable=False,
        default=ReservationStatus.RESERVED,
        server_default=ReservationStatus.RESERVED.value,
        comment="预占状态",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # 同一订单同一商品只能有一条预占记录
    __table_args__ = (
        UniqueConstraint(
            "order_id",
            "product_id",
            name="uq_order_product",
        ),
    )



# 3️ 高频查询优化索引

Index(
    "idx_reservation_order_status",
    InventoryReservation.order_id,
    InventoryReservation.status,
)

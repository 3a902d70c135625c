import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Numeric,
    Text,
    JSON,
    TIMESTAMP,
    func,
    Enum,
    ForeignKey,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from app.db.base import Base, BigIntPK


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"         # 待处理（在线支付未完成）
    PROCESSING = "PROCESSING"   # 处理中（已支付或货到付款）
    SHIPPED = "SHIPPED"         # 已发货
    DELIVERED = "DELIVERED"     # 已送达（终态）
    CANCELLED = "CANCELLED"     # 已取消（终态）


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, enum.Enum):
    ONLINE = "ONLINE"   # 在线支付
    COD = "COD"         # 货到付款


JsonType = JSON().with_variant(JSONB, "postgresql")


class Order(Base):
    """订单：明细与金额在创建时固化，之后只推进状态"""
    __tablename__ = "orders"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    order_number = Column(
        String(32),
        nullable=False,
        unique=True,
        comment="订单号",
    )

    user_id = Column(
        String(64),
        nullable=False,
        index=True,
        comment="下单用户ID",
    )

    subtotal = Column(Numeric(12, 2), nullable=False, comment="商品小计")
    shipping_fee = Column(Numeric(12, 2), nullable=False, comment="运费")
    cod_fee = Column(Numeric(12, 2), nullable=False, comment="货到付款手续费")
    total_amount = Column(Numeric(12, 2), nullable=False, comment="应付总额")

    status = Column(
        Enum(OrderStatus, name="order_status_type"),
        nullable=False,
        default=OrderStatus.PENDING,
        comment="订单状态",
    )

    payment_status = Column(
        Enum(PaymentStatus, name="payment_status_type"),
        nullable=False,
        default=PaymentStatus.PENDING,
        comment="支付状态",
    )

    payment_method = Column(
        Enum(PaymentMethod, name="payment_method_type"),
        nullable=False,
        comment="支付方式",
    )

    provider_order_id = Column(
        String(64),
        nullable=True,
        comment="支付网关订单号",
    )

    provider_payment_id = Column(
        String(64),
        nullable=True,
        comment="支付网关支付流水号",
    )

    shipping_address = Column(JsonType, nullable=False, comment="收货地址快照")
    billing_address = Column(JsonType, nullable=False, comment="账单地址快照")
    notes = Column(Text, nullable=True, comment="备注")

    paid_at = Column(TIMESTAMP(timezone=True), nullable=True)
    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=True)
    payment_expires_at = Column(
        TIMESTAMP(timezone=True),
        nullable=True,
        comment="在线支付截止时间，过期未支付自动取消",
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

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )


class OrderItem(Base):
    __tablename__ = "order_items"

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
    )

    product_id = Column(BigInteger, nullable=False, comment="商品ID")
    product_name = Column(String(255), nullable=False, comment="商品名称快照")
    quantity = Column(Integer, nullable=False, comment="购买数量")
    price = Column(Numeric(12, 2), nullable=False, comment="成交单价")

    order = relationship("Order", back_populates="items")


Index(
    "idx_orders_user_created_desc",
    Order.user_id,
    Order.created_at.desc(),
)

Index(
    "idx_orders_expiry",
    Order.payment_method,
    Order.payment_status,
    Order.payment_expires_at,
)

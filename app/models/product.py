from sqlalchemy import (
    Column,
    String,
    Numeric,
    TIMESTAMP,
    func,
    Index,
)
from sqlalchemy.orm import relationship
from app.db.base import Base, BigIntPK


class Product(Base):
    """商品（由商品目录子系统维护，这里只读取价格与名称）"""
    __tablename__ = "products"

    id = Column(
        BigIntPK,
        primary_key=True,
        autoincrement=True,
    )

    sku = Column(
        String(64),
        nullable=False,
        unique=True,
        comment="商品唯一SKU",
    )

    name = Column(
        String(255),
        nullable=False,
        comment="商品名称",
    )

    price = Column(
        Numeric(12, 2),
        nullable=False,
        comment="当前售价",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
        onupdate=func.now(),
    )

    stock = relationship("ProductStock", uselist=False, lazy="joined")

    @property
    def available_stock(self) -> int:
        return self.stock.available_stock if self.stock else 0


Index(
    "idx_products_name",
    Product.name,
)

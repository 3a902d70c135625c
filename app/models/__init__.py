# Models
from .product import Product
from .product_stocks import ProductStock
from .carts import Cart, CartItem
from .orders import Order, OrderItem, OrderStatus, PaymentStatus, PaymentMethod
from .inventory_reservations import InventoryReservation, ReservationStatus
from .inventory_logs import InventoryLog, ChangeType

__all__ = [
    "Product",
    "ProductStock",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "InventoryReservation",
    "ReservationStatus",
    "InventoryLog",
    "ChangeType",
]

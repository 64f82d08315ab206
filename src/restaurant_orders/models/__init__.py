from .category import Category
from .menu_item import MenuItem
from .order import Order, OrderStatusEnum
from .order_item import OrderItem

__all__ = [
    "Category",
    "MenuItem",
    "Order",
    "OrderStatusEnum",
    "OrderItem",
]

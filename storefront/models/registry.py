"""Imports every mapped class so Base.metadata knows all tables."""

from .base import Base
from .cart_item import CartItem
from .coupon import Coupon, DiscountType
from .coupon_usage import CouponUsage
from .order import Order, OrderStatus
from .order_item import OrderItem
from .order_return import OrderReturn, RequestType, ReturnItem, ReturnStatus
from .order_status_history import OrderStatusEvent
from .product import Product

__all__ = [
    "Base",
    "CartItem",
    "Coupon",
    "CouponUsage",
    "DiscountType",
    "Order",
    "OrderItem",
    "OrderReturn",
    "OrderStatus",
    "OrderStatusEvent",
    "Product",
    "RequestType",
    "ReturnItem",
    "ReturnStatus",
]

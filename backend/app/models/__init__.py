"""SQLAlchemy models for the food ordering API."""

from app.models.user import User, RefreshToken, UserRole
from app.models.food import Food
from app.models.order import Order, OrderItem, OrderStatus

__all__ = [
    "User",
    "RefreshToken",
    "UserRole",
    "Food",
    "Order",
    "OrderItem",
    "OrderStatus",
]

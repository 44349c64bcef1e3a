"""Order & OrderItem models."""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import UUIDPrimaryKeyMixin, TimestampMixin


class OrderStatus(str, enum.Enum):
    PAYMENT_PENDING = "Payment Pending"
    FOOD_PROCESSING = "Food Processing"
    ON_THE_WAY = "On the Way"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    PAYMENT_FAILED = "Payment Failed"


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Customer may cancel only before the kitchen hands the order to a rider
CANCELLABLE_STATUSES = frozenset({OrderStatus.PAYMENT_PENDING, OrderStatus.FOOD_PROCESSING})


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
    )

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status", values_callable=lambda e: [m.value for m in e]),
        default=OrderStatus.FOOD_PROCESSING,
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    delivery_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    address: Mapped[dict] = mapped_column(JSONB, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    payment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mobile_number: Mapped[str | None] = mapped_column(String(20))

    # M-Pesa correlation: CheckoutRequestID from the STK push response
    checkout_request_id: Mapped[str | None] = mapped_column(String(100), unique=True, index=True)
    stk_push_details: Mapped[dict | None] = mapped_column(JSONB)
    payment_confirmation: Mapped[dict | None] = mapped_column(JSONB)
    payment_failure: Mapped[dict | None] = mapped_column(JSONB)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")

    @property
    def total(self) -> Decimal:
        return self.amount + self.delivery_fee

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Order {self.id} status={self.status} amount={self.amount}>"


class OrderItem(UUIDPrimaryKeyMixin, Base):
    """Snapshot of a cart line at placement; survives edits or deletion of the food."""

    __tablename__ = "order_items"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Plain reference, no FK: foods can be deleted without touching order history
    food_id: Mapped[str] = mapped_column(String(64), nullable=False)

    order = relationship("Order", back_populates="items")

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

    def __repr__(self) -> str:
        return f"<OrderItem food={self.food_id} qty={self.quantity}>"

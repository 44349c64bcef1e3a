"""Order schemas for API request/response."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import AliasChoices, EmailStr, Field

from app.models.order import OrderStatus
from app.schemas.base import CamelModel


class Address(CamelModel):
    contact_name: str = Field(..., min_length=1)
    email: EmailStr
    street: str = Field(..., min_length=1)
    town: str = Field(..., min_length=1)
    phone: str | None = None


class OrderItemIn(CamelModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    quantity: int = Field(..., gt=0)


class PlaceOrderRequest(CamelModel):
    items: list[OrderItemIn] = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    address: Address
    mobile_number: str = Field(..., min_length=9)
    include_delivery: bool = True


class LineItem(CamelModel):
    """One line of the external payment request."""

    name: str
    unit_price: Decimal
    quantity: int


class OrderSummary(CamelModel):
    total_amount: Decimal
    delivery_fee: Decimal
    line_items: list[LineItem]
    items: list[OrderItemIn]


class PlaceOrderResponse(CamelModel):
    success: bool = True
    message: str
    merchant_request_id: str | None = None
    checkout_request_id: str | None = None
    order_id: UUID
    order_details: OrderSummary


class VerifyRequest(CamelModel):
    correlation_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("correlationId", "CheckoutRequestID", "correlation_id"),
    )
    outcome: Literal["success", "failure", "cancelled"] | None = None


class OrderItemResponse(CamelModel):
    id: UUID
    food_id: str
    name: str
    price: Decimal
    quantity: int
    subtotal: Decimal


class OrderResponse(CamelModel):
    id: UUID
    user_id: UUID
    items: list[OrderItemResponse]
    amount: Decimal
    delivery_fee: Decimal
    total: Decimal
    address: dict
    status: OrderStatus
    date: datetime
    payment: bool
    mobile_number: str | None = None
    checkout_request_id: str | None = None
    stk_push_details: dict | None = None
    payment_confirmation: dict | None = None
    payment_failure: dict | None = None
    delivered_at: datetime | None = None


class VerifyResponse(CamelModel):
    success: bool
    message: str
    redirect_to: str
    order: OrderResponse | None = None


class StatusUpdateRequest(CamelModel):
    order_id: UUID
    status: OrderStatus


class CancelRequest(CamelModel):
    order_id: UUID


class OrderDetailResponse(CamelModel):
    success: bool = True
    message: str
    order: OrderResponse


class StatusStats(CamelModel):
    count: int
    total_amount: Decimal


class OrderListResponse(CamelModel):
    success: bool = True
    count: int
    total: int
    page: int
    total_pages: int
    orders: list[OrderResponse]
    statistics: dict[str, StatusStats] | None = None


class PaymentConfirmationItem(CamelModel):
    order_id: UUID
    user_id: UUID
    amount: Decimal
    total: Decimal
    mobile_number: str | None = None
    payment_confirmation: dict | None = None
    date: datetime


class PaymentConfirmationListResponse(CamelModel):
    success: bool = True
    count: int
    payments: list[PaymentConfirmationItem]

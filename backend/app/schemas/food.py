"""Catalog schemas. Writes arrive as multipart forms, reads go out as JSON."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import Field

from app.schemas.base import CamelModel


class FoodResponse(CamelModel):
    id: UUID
    name: str
    description: str | None = None
    price: Decimal
    category: str
    images: list[str]
    is_on_offer: bool
    offer_price: Decimal | None = None
    effective_price: Decimal
    recipe: str | None = None
    created_at: datetime
    updated_at: datetime


class FoodListResponse(CamelModel):
    success: bool = True
    data: list[FoodResponse]


class FoodDetailResponse(CamelModel):
    success: bool = True
    data: FoodResponse


class FoodRemoveRequest(CamelModel):
    id: UUID


class FoodRemoveResponse(CamelModel):
    success: bool = True
    message: str = "Food removed"
    removed_images: int = Field(default=0, ge=0)

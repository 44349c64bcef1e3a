from pydantic import Field

from app.schemas.base import CamelModel


class CartItemRequest(CamelModel):
    item_id: str = Field(min_length=1, max_length=64)


class CartResponse(CamelModel):
    success: bool = True
    message: str | None = None
    cart_data: dict[str, int]

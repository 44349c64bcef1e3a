"""Food (catalog item) model."""

from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Boolean, Numeric, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.mixins import UUIDPrimaryKeyMixin, TimestampMixin

OFFER_RATIO = Decimal("0.8")
CENTS = Decimal("0.01")


def derive_offer_price(
    price: Decimal, is_on_offer: bool, offer_price: Decimal | None
) -> Decimal | None:
    """Offer price rule: cleared when not on offer, 80% of price when unset or not a discount."""
    if not is_on_offer:
        return None
    if offer_price is None or offer_price >= price:
        return (price * OFFER_RATIO).quantize(CENTS, rounding=ROUND_HALF_UP)
    return offer_price


class Food(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "foods"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    # Newest first
    images: Mapped[list] = mapped_column(JSONB, default=list, nullable=False)
    is_on_offer: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    offer_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    recipe: Mapped[str | None] = mapped_column(Text)

    def apply_offer_pricing(self) -> None:
        self.offer_price = derive_offer_price(
            Decimal(self.price), bool(self.is_on_offer), self.offer_price
        )

    @property
    def effective_price(self) -> Decimal:
        if self.is_on_offer and self.offer_price is not None:
            return self.offer_price
        return self.price

    def __repr__(self) -> str:
        return f"<Food {self.name} price={self.price}>"

"""Catalog endpoints. Reads are public, writes need an admin or staff token."""

import logging
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import require_admin
from app.core.exceptions import NotFound, ValidationError
from app.db.base import get_db
from app.models.food import Food
from app.schemas.auth import CurrentUser
from app.schemas.food import (
    FoodDetailResponse,
    FoodListResponse,
    FoodRemoveRequest,
    FoodRemoveResponse,
    FoodResponse,
)
from app.services.media import delete_image, save_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/food", tags=["food"])


async def _store_uploads(images: list[UploadFile] | None) -> list[str]:
    """Save uploads and return their URLs, last uploaded first."""
    images = [f for f in (images or []) if f.filename]
    if len(images) > settings.MAX_FOOD_IMAGES:
        raise ValidationError(f"At most {settings.MAX_FOOD_IMAGES} images allowed")
    urls = [await save_image(f) for f in images]
    urls.reverse()
    return urls


async def _get_food(db: AsyncSession, food_id: UUID) -> Food:
    food = await db.get(Food, food_id)
    if not food:
        raise NotFound("Food not found")
    return food


@router.get("/list", response_model=FoodListResponse)
async def list_foods(category: str | None = None, db: AsyncSession = Depends(get_db)):
    query = select(Food)
    if category:
        query = query.where(Food.category == category)
    result = await db.execute(query.order_by(Food.created_at.desc()))
    return FoodListResponse(data=[FoodResponse.model_validate(f) for f in result.scalars().all()])


@router.get("/{food_id}", response_model=FoodDetailResponse)
async def get_food(food_id: UUID, db: AsyncSession = Depends(get_db)):
    food = await _get_food(db, food_id)
    return FoodDetailResponse(data=FoodResponse.model_validate(food))


@router.post("/add", response_model=FoodDetailResponse, status_code=status.HTTP_201_CREATED)
async def add_food(
    name: str = Form(..., min_length=1, max_length=255),
    price: Decimal = Form(..., gt=0),
    category: str = Form(..., min_length=1, max_length=100),
    description: str | None = Form(None),
    is_on_offer: bool = Form(False, alias="isOnOffer"),
    offer_price: Decimal | None = Form(None, alias="offerPrice", gt=0),
    recipe: str | None = Form(None),
    images: list[UploadFile] | None = File(None),
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a catalog item with up to five images."""
    food = Food(
        name=name,
        description=description,
        price=price,
        category=category,
        is_on_offer=is_on_offer,
        offer_price=offer_price,
        recipe=recipe,
        images=await _store_uploads(images),
    )
    food.apply_offer_pricing()
    db.add(food)
    await db.commit()
    await db.refresh(food)

    logger.info("Food %s added by %s", food.id, current_user.id)
    return FoodDetailResponse(data=FoodResponse.model_validate(food))


@router.put("/update/{food_id}", response_model=FoodDetailResponse)
async def update_food(
    food_id: UUID,
    name: str | None = Form(None, min_length=1, max_length=255),
    price: Decimal | None = Form(None, gt=0),
    category: str | None = Form(None, min_length=1, max_length=100),
    description: str | None = Form(None),
    is_on_offer: bool | None = Form(None, alias="isOnOffer"),
    offer_price: Decimal | None = Form(None, alias="offerPrice", gt=0),
    recipe: str | None = Form(None),
    images: list[UploadFile] | None = File(None),
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Partial update. New images go to the front; only the newest five are kept."""
    food = await _get_food(db, food_id)

    updates = {
        "name": name,
        "price": price,
        "category": category,
        "description": description,
        "is_on_offer": is_on_offer,
        "offer_price": offer_price,
        "recipe": recipe,
    }
    for field, value in updates.items():
        if value is not None:
            setattr(food, field, value)

    new_urls = await _store_uploads(images)
    if new_urls:
        combined = new_urls + list(food.images or [])
        for dropped in combined[settings.MAX_FOOD_IMAGES:]:
            delete_image(dropped)
        food.images = combined[: settings.MAX_FOOD_IMAGES]

    food.apply_offer_pricing()
    await db.commit()
    await db.refresh(food)
    return FoodDetailResponse(data=FoodResponse.model_validate(food))


@router.post("/remove", response_model=FoodRemoveResponse)
async def remove_food(
    body: FoodRemoveRequest,
    current_user: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a catalog item and its stored images. Past orders keep their snapshots."""
    food = await _get_food(db, body.id)
    removed = sum(1 for url in (food.images or []) if delete_image(url))
    await db.delete(food)
    await db.commit()

    logger.info("Food %s removed by %s", body.id, current_user.id)
    return FoodRemoveResponse(removed_images=removed)

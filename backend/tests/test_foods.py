"""Unit tests for catalog pricing, image storage and food endpoints."""

import io
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException, UploadFile
from starlette.datastructures import Headers

from app.api.foods import get_food, list_foods, remove_food, update_food
from app.core.config import settings
from app.models.food import Food, derive_offer_price
from app.schemas.food import FoodRemoveRequest
from app.services import media


def _food(**overrides) -> Food:
    now = datetime.now(timezone.utc)
    fields = dict(
        id=uuid.uuid4(),
        name="Pilau",
        description="Spiced rice",
        price=Decimal("250.00"),
        category="Rice",
        images=["/uploads/foods/a.png"],
        is_on_offer=False,
        offer_price=None,
        recipe=None,
        created_at=now,
        updated_at=now,
    )
    fields.update(overrides)
    return Food(**fields)


def _upload(name: str, content_type: str, data: bytes = b"\x89PNG fake") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=name,
        size=len(data),
        headers=Headers({"content-type": content_type}),
    )


# ── Offer pricing ─────────────────────────────────

def test_offer_price_cleared_when_not_on_offer():
    assert derive_offer_price(Decimal("250.00"), False, Decimal("200.00")) is None


def test_offer_price_defaults_to_eighty_percent():
    assert derive_offer_price(Decimal("250.00"), True, None) == Decimal("200.00")


def test_offer_price_not_a_discount_is_replaced():
    assert derive_offer_price(Decimal("99.99"), True, Decimal("120.00")) == Decimal("79.99")


def test_explicit_offer_price_kept():
    assert derive_offer_price(Decimal("250.00"), True, Decimal("180.00")) == Decimal("180.00")


def test_effective_price():
    food = _food(is_on_offer=True, offer_price=None)
    food.apply_offer_pricing()
    assert food.effective_price == Decimal("200.00")

    food.is_on_offer = False
    food.apply_offer_pricing()
    assert food.offer_price is None
    assert food.effective_price == Decimal("250.00")


# ── Image storage ─────────────────────────────────

@pytest.mark.asyncio
async def test_save_and_delete_image(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))

    url = await media.save_image(_upload("dish.PNG", "image/png"))

    assert url.startswith("/uploads/foods/") and url.endswith(".png")
    stored = tmp_path / "foods" / url.rsplit("/", 1)[-1]
    assert stored.read_bytes() == b"\x89PNG fake"
    assert media.delete_image(url) is True
    assert not stored.exists()
    assert media.delete_image(url) is False


@pytest.mark.asyncio
async def test_save_image_rejects_other_types(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path))
    with pytest.raises(HTTPException) as exc:
        await media.save_image(_upload("notes.txt", "text/plain"))
    assert exc.value.status_code == 400


def test_delete_image_ignores_foreign_urls():
    assert media.delete_image("https://cdn.example.com/x.png") is False


# ── Endpoints ─────────────────────────────────────

@pytest.mark.asyncio
async def test_list_foods(mock_db):
    result = MagicMock()
    result.scalars.return_value.all.return_value = [_food(), _food(name="Chapati")]
    mock_db.execute.return_value = result

    resp = await list_foods(category=None, db=mock_db)

    assert [f.name for f in resp.data] == ["Pilau", "Chapati"]
    assert resp.data[0].effective_price == Decimal("250.00")


@pytest.mark.asyncio
async def test_get_food_not_found(mock_db):
    mock_db.get.return_value = None
    with pytest.raises(HTTPException) as exc:
        await get_food(uuid.uuid4(), db=mock_db)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_update_food_partial(mock_db, admin):
    food = _food()
    mock_db.get.return_value = food

    resp = await update_food(
        food.id,
        name=None,
        price=Decimal("300.00"),
        category=None,
        description=None,
        is_on_offer=True,
        offer_price=None,
        recipe=None,
        images=None,
        current_user=admin,
        db=mock_db,
    )

    assert resp.data.name == "Pilau"
    assert resp.data.price == Decimal("300.00")
    assert resp.data.offer_price == Decimal("240.00")
    assert resp.data.images == ["/uploads/foods/a.png"]
    mock_db.commit.assert_awaited_once()


@pytest.mark.asyncio
async def test_update_food_keeps_newest_images(mock_db, admin):
    old = [f"/uploads/foods/old{i}.png" for i in range(5)]
    food = _food(images=list(old))
    mock_db.get.return_value = food

    with patch("app.api.foods.save_image", AsyncMock(side_effect=["/uploads/foods/n1.png", "/uploads/foods/n2.png"])), \
         patch("app.api.foods.delete_image") as delete_image:
        resp = await update_food(
            food.id,
            name=None,
            price=None,
            category=None,
            description=None,
            is_on_offer=None,
            offer_price=None,
            recipe=None,
            images=[_upload("n1.png", "image/png"), _upload("n2.png", "image/png")],
            current_user=admin,
            db=mock_db,
        )

    assert resp.data.images == ["/uploads/foods/n2.png", "/uploads/foods/n1.png"] + old[:3]
    assert [c.args[0] for c in delete_image.call_args_list] == old[3:]


@pytest.mark.asyncio
async def test_remove_food_deletes_images(mock_db, admin):
    food = _food(images=["/uploads/foods/a.png", "/uploads/foods/b.png"])
    mock_db.get.return_value = food

    with patch("app.api.foods.delete_image", return_value=True) as delete_image:
        resp = await remove_food(FoodRemoveRequest(id=food.id), current_user=admin, db=mock_db)

    assert resp.removed_images == 2
    assert delete_image.call_count == 2
    mock_db.delete.assert_awaited_once_with(food)

"""Cart endpoints. The cart lives on the user row as ``cart_data``."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_current_user
from app.core.exceptions import NotFound
from app.db.base import get_db
from app.models.user import User
from app.schemas.auth import CurrentUser
from app.schemas.cart import CartItemRequest, CartResponse
from app.services import cart as cart_ops
from app.services.users import get_user

router = APIRouter(prefix="/cart", tags=["cart"])


async def _load_user(db: AsyncSession, current_user: CurrentUser, for_update: bool = False) -> User:
    user = await get_user(db, current_user.id, for_update=for_update)
    if not user:
        raise NotFound("User not found")
    return user


@router.post("/add", response_model=CartResponse)
async def add_to_cart(
    body: CartItemRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Increment the quantity of an item by one."""
    user = await _load_user(db, current_user, for_update=True)
    user.cart_data = cart_ops.add_item(user.cart_data, body.item_id)
    await db.commit()
    return CartResponse(message="Added to Cart", cart_data=user.cart_data)


@router.post("/remove", response_model=CartResponse)
async def remove_from_cart(
    body: CartItemRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Decrement the quantity of an item by one; the key goes away at zero."""
    user = await _load_user(db, current_user, for_update=True)
    user.cart_data = cart_ops.remove_item(user.cart_data, body.item_id)
    await db.commit()
    return CartResponse(message="Removed from Cart", cart_data=user.cart_data)


@router.post("/get", response_model=CartResponse)
@router.get("/get", response_model=CartResponse)
async def get_cart(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await _load_user(db, current_user)
    return CartResponse(cart_data=cart_ops.clean_cart(user.cart_data))

from app.schemas.auth import (
    RegisterRequest, LoginRequest, RefreshRequest, LogoutRequest,
    PublicUser, UserProfile, TokenPairResponse, AccessTokenResponse, CurrentUser,
)
from app.schemas.cart import CartItemRequest, CartResponse
from app.schemas.food import FoodResponse, FoodListResponse
from app.schemas.order import (
    PlaceOrderRequest, PlaceOrderResponse, VerifyRequest, VerifyResponse,
    OrderResponse, OrderListResponse, StatusUpdateRequest,
)

__all__ = [
    "RegisterRequest", "LoginRequest", "RefreshRequest", "LogoutRequest",
    "PublicUser", "UserProfile", "TokenPairResponse", "AccessTokenResponse", "CurrentUser",
    "CartItemRequest", "CartResponse",
    "FoodResponse", "FoodListResponse",
    "PlaceOrderRequest", "PlaceOrderResponse", "VerifyRequest", "VerifyResponse",
    "OrderResponse", "OrderListResponse", "StatusUpdateRequest",
]

"""Account endpoints: register, login, token refresh, logout, profile."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.deps import get_current_user
from app.core.exceptions import AccountLocked, Forbidden, NotFound, Unauthorized
from app.core.security import InvalidToken, TokenService, get_token_service
from app.db.base import get_db
from app.models.user import User, UserRole
from app.schemas.auth import (
    AccessTokenResponse,
    CurrentUser,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    ProfileResponse,
    PublicUser,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    UserProfile,
)
from app.services.users import create_user, find_by_email, get_user, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"])

# Same answer for unknown email and wrong password, so accounts cannot be enumerated
INVALID_CREDENTIALS = "Invalid credentials"
INVALID_REFRESH = "Invalid or expired refresh token"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _issue_pair(user: User, tokens: TokenService, now: datetime) -> tuple[str, str]:
    """Mint an access/refresh pair and record the refresh token on the user."""
    access_token = tokens.issue_access_token(user.id, UserRole(user.role).value)
    refresh_token = tokens.issue_refresh_token(user.id)
    user.add_refresh_token(refresh_token, now, tokens.refresh_ttl)
    return access_token, refresh_token


@router.post("/register", response_model=TokenPairResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """Create an account and log it in."""
    user = await create_user(db, body.name, body.email, body.password, body.role.value)

    now = _now()
    access_token, refresh_token = _issue_pair(user, tokens, now)
    user.last_login = now
    await db.commit()

    return TokenPairResponse(
        message="User registered successfully",
        access_token=access_token,
        refresh_token=refresh_token,
        user=PublicUser.model_validate(user),
    )


@router.post("/login", response_model=TokenPairResponse)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """Authenticate via email + password, return an access/refresh pair."""
    # Row lock keeps concurrent failures from losing attempt-counter updates
    user = await find_by_email(db, body.email, for_update=True)
    if not user:
        logger.warning("Login failed: unknown email %s", body.email)
        raise Unauthorized(INVALID_CREDENTIALS)

    now = _now()
    if user.is_locked(now):
        raise AccountLocked()

    if not user.is_active:
        raise Forbidden("Account is deactivated")

    if not verify_password(user, body.password):
        locked = user.register_failed_login(
            now,
            max_attempts=settings.MAX_LOGIN_ATTEMPTS,
            lock_time=timedelta(minutes=settings.LOCK_TIME_MINUTES),
        )
        await db.commit()
        if locked:
            logger.warning("Account %s locked until %s", user.email, user.lock_until)
        else:
            logger.warning("Login failed for %s (attempt %d)", user.email, user.login_attempts)
        raise Unauthorized(INVALID_CREDENTIALS)

    user.register_successful_login(now)
    user.prune_refresh_tokens(now)
    access_token, refresh_token = _issue_pair(user, tokens, now)
    await db.commit()

    return TokenPairResponse(
        message="Login successful",
        access_token=access_token,
        refresh_token=refresh_token,
        user=PublicUser.model_validate(user),
    )


@router.post("/refresh-token", response_model=AccessTokenResponse)
async def refresh_access_token(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    """Exchange a live refresh token for a new access token. The refresh token is not rotated."""
    try:
        claims = tokens.verify_refresh_token(body.refresh_token)
    except InvalidToken:
        raise Unauthorized(INVALID_REFRESH)

    user = await get_user(db, claims["id"])
    if not user:
        raise Unauthorized("Invalid refresh token")

    now = _now()
    if user.find_usable_refresh_token(body.refresh_token, now) is None:
        raise Unauthorized(INVALID_REFRESH)

    user.prune_refresh_tokens(now)
    await db.commit()

    return AccessTokenResponse(
        access_token=tokens.issue_access_token(user.id, UserRole(user.role).value),
        user=PublicUser.model_validate(user),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest | None = None,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate one refresh token. Succeeds whether or not the token was found."""
    if body and body.refresh_token:
        user = await get_user(db, current_user.id)
        if user and user.deactivate_refresh_token(body.refresh_token):
            user.prune_refresh_tokens(_now())
            await db.commit()
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate every refresh token of the caller."""
    user = await get_user(db, current_user.id)
    if user:
        user.deactivate_all_refresh_tokens()
        user.prune_refresh_tokens(_now())
        await db.commit()
    return MessageResponse(message="Logged out from all devices successfully")


@router.get("/profile", response_model=ProfileResponse)
async def get_profile(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the profile of the current authenticated user."""
    user = await get_user(db, current_user.id)
    if not user:
        raise NotFound("User not found")
    return ProfileResponse(user=UserProfile.model_validate(user))

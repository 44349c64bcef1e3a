"""Auth request/response schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from app.models.user import UserRole
from app.schemas.base import CamelModel


# ── Register / Login ───────────────────────────────
class RegisterRequest(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)
    role: UserRole = UserRole.USER


class LoginRequest(CamelModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class RefreshRequest(CamelModel):
    refresh_token: str = Field(min_length=1)


class LogoutRequest(CamelModel):
    refresh_token: str | None = None


# ── Projections ────────────────────────────────────
class PublicUser(CamelModel):
    """Never carries the password hash or the refresh token list."""

    id: UUID
    name: str
    email: str
    role: UserRole


class UserProfile(PublicUser):
    is_active: bool
    email_verified: bool
    last_login: datetime | None = None
    created_at: datetime | None = None


# ── Responses ──────────────────────────────────────
class TokenPairResponse(CamelModel):
    success: bool = True
    message: str
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: PublicUser


class AccessTokenResponse(CamelModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    user: PublicUser


class ProfileResponse(CamelModel):
    success: bool = True
    user: UserProfile


class MessageResponse(CamelModel):
    success: bool = True
    message: str


# ── Current User ───────────────────────────────────
class CurrentUser(CamelModel):
    """Identity attached to a request by the auth gateway."""

    id: UUID
    role: str

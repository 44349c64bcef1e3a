"""User and RefreshToken models."""

import enum
import uuid
from datetime import datetime, timedelta

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.models.mixins import UUIDPrimaryKeyMixin, TimestampMixin


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    STAFF = "staff"
    USER = "user"


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        Enum(UserRole, values_callable=lambda e: [m.value for m in e]),
        default=UserRole.USER,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lock_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_login: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # productId -> quantity, see app.services.cart
    cart_data: Mapped[dict] = mapped_column(JSONB, default=dict, nullable=False)

    refresh_tokens = relationship(
        "RefreshToken",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="RefreshToken.created_at",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"

    # ── Lockout ─────────────────────────────────────

    def is_locked(self, now: datetime) -> bool:
        return self.lock_until is not None and self.lock_until > now

    def register_failed_login(self, now: datetime, max_attempts: int, lock_time: timedelta) -> bool:
        """Count a wrong password. Returns True when this attempt locked the account."""
        self.login_attempts += 1
        if self.login_attempts >= max_attempts:
            self.lock_until = now + lock_time
            self.login_attempts = 0
            return True
        return False

    def register_successful_login(self, now: datetime) -> None:
        self.login_attempts = 0
        self.lock_until = None
        self.last_login = now

    # ── Refresh tokens ──────────────────────────────

    def prune_refresh_tokens(self, now: datetime) -> None:
        """Drop expired or deactivated tokens; delete-orphan removes the rows."""
        self.refresh_tokens = [t for t in self.refresh_tokens if t.is_usable(now)]

    def add_refresh_token(self, token: str, now: datetime, ttl: timedelta) -> "RefreshToken":
        record = RefreshToken(token=token, created_at=now, expires_at=now + ttl, is_active=True)
        self.refresh_tokens.append(record)
        return record

    def find_usable_refresh_token(self, token: str, now: datetime) -> "RefreshToken | None":
        for record in self.refresh_tokens:
            if record.token == token and record.is_usable(now):
                return record
        return None

    def deactivate_refresh_token(self, token: str) -> bool:
        for record in self.refresh_tokens:
            if record.token == token:
                record.is_active = False
                return True
        return False

    def deactivate_all_refresh_tokens(self) -> None:
        for record in self.refresh_tokens:
            record.is_active = False


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    user = relationship("User", back_populates="refresh_tokens")

    def is_usable(self, now: datetime) -> bool:
        return bool(self.is_active) and self.expires_at > now

    def __repr__(self) -> str:
        return f"<RefreshToken user={self.user_id} active={self.is_active}>"

"""Credential store: user creation, lookup and password checks."""

import logging
import re
from uuid import UUID

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictError, ValidationError
from app.core.security import hash_password, verify_password as _verify_hash
from app.models.user import User, UserRole

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def validate_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    if not (
        re.search(r"[A-Z]", password)
        and re.search(r"[a-z]", password)
        and re.search(r"\d", password)
    ):
        raise ValidationError(
            "Password must contain at least 1 uppercase, 1 lowercase, and 1 number"
        )


async def find_by_email(db: AsyncSession, email: str, for_update: bool = False) -> User | None:
    query = select(User).where(User.email == email)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: UUID, for_update: bool = False) -> User | None:
    query = select(User).where(User.id == user_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


def verify_password(user: User, plaintext: str) -> bool:
    return _verify_hash(plaintext, user.hashed_password)


async def create_user(
    db: AsyncSession, name: str, email: str, password: str, role: str = UserRole.USER.value
) -> User:
    """Validate input and add a new user to the session (flushed, not committed)."""
    if not name or not email or not password:
        raise ValidationError("Name, email, and password are required")

    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError("Please enter a valid email")

    validate_password_strength(password)

    try:
        user_role = UserRole(role)
    except ValueError:
        raise ValidationError("Invalid role specified")

    if await find_by_email(db, email):
        raise ConflictError("User already exists")

    user = User(
        name=name,
        email=email,
        hashed_password=hash_password(password),
        role=user_role,
        is_active=True,
        email_verified=False,
        login_attempts=0,
        cart_data={},
        refresh_tokens=[],
    )
    db.add(user)
    try:
        await db.flush()  # get user.id
    except IntegrityError:
        # Concurrent registration won the unique email index
        await db.rollback()
        raise ConflictError("User already exists")
    logger.info("Registered user %s role=%s", email, user_role.value)
    return user

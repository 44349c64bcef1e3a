"""Shared fixtures: in-memory model factories and mocked sessions."""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.security import TokenService, hash_password
from app.models.order import Order, OrderItem, OrderStatus
from app.models.user import User, UserRole
from app.schemas.auth import CurrentUser

PASSWORD = "Secret123"
# One bcrypt hash for the whole run, hashing is slow on purpose
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def tokens():
    return TokenService(
        access_secret="test-access-secret",
        refresh_secret="test-refresh-secret",
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
    )


@pytest.fixture
def make_user():
    def _make(**overrides) -> User:
        fields = dict(
            id=uuid.uuid4(),
            name="Jane",
            email="jane@example.com",
            hashed_password=PASSWORD_HASH,
            role=UserRole.USER,
            is_active=True,
            email_verified=False,
            login_attempts=0,
            lock_until=None,
            last_login=None,
            cart_data={},
            refresh_tokens=[],
        )
        fields.update(overrides)
        return User(**fields)

    return _make


@pytest.fixture
def make_order():
    def _make(**overrides) -> Order:
        fields = dict(
            id=uuid.uuid4(),
            user_id=uuid.uuid4(),
            items=[
                OrderItem(id=uuid.uuid4(), food_id="food123", name="Pilau", price=Decimal("250.00"), quantity=2)
            ],
            amount=Decimal("500.00"),
            delivery_fee=Decimal("100.00"),
            address={"contactName": "Jane", "email": "jane@example.com", "street": "Moi Ave", "town": "Nairobi"},
            status=OrderStatus.PAYMENT_PENDING,
            date=datetime.now(timezone.utc),
            payment=False,
            mobile_number="254712345678",
            checkout_request_id="ws_CO_191020261200",
        )
        fields.update(overrides)
        return Order(**fields)

    return _make


@pytest.fixture
def mock_db():
    db = AsyncMock()
    db.add = MagicMock()
    return db


@pytest.fixture
def customer():
    return CurrentUser(id=uuid.uuid4(), role="user")


@pytest.fixture
def admin():
    return CurrentUser(id=uuid.uuid4(), role="admin")

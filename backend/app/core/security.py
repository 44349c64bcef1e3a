"""JWT token management and password hashing."""

import uuid
from datetime import datetime, timedelta, timezone
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from app.core.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


def hash_password(plain: str) -> str:
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


class InvalidToken(Exception):
    """Token is malformed, forged or of the wrong kind."""


class ExpiredToken(InvalidToken):
    """Token signature is valid but its exp claim has passed."""


class TokenService:
    """Issues and verifies access/refresh token pairs.

    Access and refresh tokens are signed with distinct secrets and carry a
    ``type`` claim, so one kind never verifies as the other.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
    ):
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def issue_access_token(
        self, user_id: UUID, role: str, expires_delta: timedelta | None = None
    ) -> str:
        expire = datetime.now(timezone.utc) + (expires_delta or self.access_ttl)
        payload = {
            "sub": str(user_id),
            "role": role,
            "type": "access",
            "exp": expire,
        }
        return jwt.encode(payload, self.access_secret, algorithm=self.algorithm)

    def issue_refresh_token(self, user_id: UUID, expires_delta: timedelta | None = None) -> str:
        expire = datetime.now(timezone.utc) + (expires_delta or self.refresh_ttl)
        payload = {
            "sub": str(user_id),
            "type": "refresh",
            "jti": uuid.uuid4().hex,
            "exp": expire,
        }
        return jwt.encode(payload, self.refresh_secret, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> dict:
        """Return ``{"id", "role"}``. Raises InvalidToken on any failure."""
        payload = self._decode(token, self.access_secret, "access")
        try:
            return {"id": UUID(payload["sub"]), "role": payload["role"]}
        except (KeyError, ValueError):
            raise InvalidToken("Malformed access token claims")

    def verify_refresh_token(self, token: str) -> dict:
        """Return ``{"id"}``. Raises ExpiredToken or InvalidToken."""
        payload = self._decode(token, self.refresh_secret, "refresh")
        try:
            return {"id": UUID(payload["sub"])}
        except (KeyError, ValueError):
            raise InvalidToken("Malformed refresh token claims")

    def _decode(self, token: str, secret: str, kind: str) -> dict:
        try:
            payload = jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise ExpiredToken(f"{kind} token expired")
        except JWTError:
            raise InvalidToken(f"Invalid {kind} token")
        if payload.get("type") != kind:
            raise InvalidToken(f"Not a {kind} token")
        return payload


token_service = TokenService(
    access_secret=settings.JWT_SECRET,
    refresh_secret=settings.JWT_REFRESH_SECRET,
    algorithm=settings.ALGORITHM,
    access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
)


def get_token_service() -> TokenService:
    """FastAPI dependency; override in tests to inject other secrets."""
    return token_service

"""Dependency injection: bearer-token gateway and role enforcement."""

import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.exceptions import Forbidden, Unauthorized
from app.core.security import InvalidToken, TokenService, get_token_service
from app.schemas.auth import CurrentUser

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    tokens: TokenService = Depends(get_token_service),
) -> CurrentUser:
    """Decode the bearer access token. Pure token check, no database lookup."""
    if credentials is None or not credentials.credentials:
        raise Unauthorized("Not authorized, login again")
    try:
        claims = tokens.verify_access_token(credentials.credentials)
    except InvalidToken as exc:
        logger.info("Rejected access token: %s", exc)
        raise Unauthorized("Invalid token")
    return CurrentUser(id=claims["id"], role=claims["role"])


def require_role(*allowed_roles: str):
    """Dependency factory: checks the user has one of the allowed roles."""

    async def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in allowed_roles:
            raise Forbidden(
                f"Role '{user.role}' not allowed. Required: {', '.join(allowed_roles)}"
            )
        return user

    return checker


require_admin = require_role("admin", "staff")

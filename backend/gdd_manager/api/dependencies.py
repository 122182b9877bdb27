"""Request dependencies: database sessions and session-token identity."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from gdd_manager.config import settings
from gdd_manager.db.database import get_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db)]


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, expires_minutes: int | None = None) -> str:
    """Issue a signed session token whose subject is ``user_id``."""
    if expires_minutes is None:
        expires_minutes = settings.jwt_expiration_minutes
    claims: dict[str, Any] = {
        "sub": user_id,
        "iat": datetime.now(UTC),
        "exp": datetime.now(UTC) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict[str, Any]:
    """Verify signature and expiry. Raises JWTError on any problem."""
    claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    if not claims.get("sub"):
        raise JWTError("Token has no subject")
    return claims


async def get_optional_user_id(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)] = None,
) -> str | None:
    """Identity from the session cookie, else the Bearer header.

    Missing, malformed and expired tokens all resolve to ``None``.
    """
    token = request.cookies.get(settings.session_cookie_name)
    if not token and credentials is not None:
        token = credentials.credentials
    if not token:
        return None
    try:
        return decode_token(token)["sub"]
    except JWTError:
        return None


OptionalUserId = Annotated[str | None, Depends(get_optional_user_id)]


async def get_current_user_id(user_id: OptionalUserId) -> str:
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]

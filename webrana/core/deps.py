from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from webrana.core.config import settings
from webrana.core.db import get_db
from webrana.core.security import TokenError, constant_time_equals, decode_token
from webrana.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    try:
        payload = decode_token(token, expected_type="access")
    except TokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid user id in token")

    user = await db.get(User, user_id)

    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User inactive")

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return current_user


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    """Guards service-to-service endpoints with the shared INTERNAL_API_KEY."""
    if not x_api_key:
        raise HTTPException(status_code=401, detail={"code": "API_KEY_MISSING", "message": "X-API-Key header is required"})
    if not settings.INTERNAL_API_KEY:
        raise HTTPException(
            status_code=401,
            detail={"code": "API_KEY_NOT_CONFIGURED", "message": "Internal API key is not configured"},
        )
    if not constant_time_equals(x_api_key, settings.INTERNAL_API_KEY):
        raise HTTPException(status_code=401, detail={"code": "API_KEY_INVALID", "message": "Invalid API key"})

"""FastAPI authentication dependencies for route protection."""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.auth.jwt import ACCESS, decode_token
from marketplace.database import get_db
from marketplace.errors import Forbidden, NotAuthenticated, raise_http
from marketplace.models.user import User

# auto_error=False so a missing header is reported as 401 like a bad token
_bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(message: str) -> HTTPException:
    exc = NotAuthenticated(message)
    return HTTPException(
        status_code=exc.status_code,
        detail=exc.to_detail(),
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Return the account behind the bearer access token.

    Raises:
        HTTPException 401: missing, invalid or expired token, refresh token
            used as access token, unknown or deactivated account.
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")

    try:
        payload = decode_token(credentials.credentials)
    except JWTError:
        raise _unauthorized("Could not validate credentials") from None

    if payload.get("type") != ACCESS:
        raise _unauthorized("Invalid token type")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized("Could not validate credentials") from None

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise _unauthorized("Could not validate credentials")
    if not user.is_active:
        raise _unauthorized("User account is inactive")
    return user


async def get_current_admin_user(user: User = Depends(get_current_user)) -> User:
    """Restrict a route to administrators.

    Raises:
        HTTPException 403: If the caller is not an admin.
    """
    if not user.is_admin:
        raise_http(Forbidden("Admin role required"))
    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Like :func:`get_current_user` but ``None`` instead of 401.

    For public endpoints that show more to the resource owner.
    """
    if credentials is None:
        return None
    try:
        return await get_current_user(credentials, db)
    except HTTPException:
        return None

"""Bearer token issuing and verification."""

from datetime import datetime, timedelta, timezone

from jose import jwt

from marketplace.config import settings

ACCESS = "access"
REFRESH = "refresh"


def _encode(subject: str, token_type: str, lifetime: timedelta, extra: dict | None = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {**(extra or {}), "sub": subject, "iat": now, "exp": now + lifetime, "type": token_type}
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, expires_delta: timedelta | None = None, **claims) -> str:
    """Short-lived token accepted on every authenticated endpoint."""
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    return _encode(user_id, ACCESS, lifetime, claims)


def create_refresh_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(days=settings.jwt_refresh_token_expire_days)
    return _encode(user_id, REFRESH, lifetime)


def decode_token(token: str) -> dict:
    """Decode and verify a token.

    Raises:
        jose.JWTError: If the token is invalid, expired, or malformed.
    """
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def create_token_pair(user_id: str) -> dict[str, str]:
    return {
        "access_token": create_access_token(user_id),
        "refresh_token": create_refresh_token(user_id),
        "token_type": "bearer",
    }

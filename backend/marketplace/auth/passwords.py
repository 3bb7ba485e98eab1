"""Password hashing with bcrypt."""

import bcrypt

# bcrypt only looks at the first 72 bytes and recent releases refuse longer input.
MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes:
    raw = password.encode("utf-8")
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return raw


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    """Check a password; accounts without a local password never match."""
    if not hashed_password:
        return False
    try:
        candidate = _encode(plain_password)
    except ValueError:
        return False
    return bcrypt.checkpw(candidate, hashed_password.encode("utf-8"))

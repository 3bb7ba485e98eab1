"""Device token store and token format policy."""

import enum
import logging
import re
import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import insert_ignoring_conflicts, utcnow
from marketplace.models.device_token import DeviceToken
from marketplace.models.user import User

logger = logging.getLogger(__name__)

MAX_TOKENS_PER_USER = 20

_APNS_RAW = re.compile(r"^[0-9A-Fa-f]{64}$")


class TokenKind(str, enum.Enum):
    APNS_RAW = "apns_raw"
    FCM_REGISTRATION = "fcm_registration"


def classify_token(token: str) -> TokenKind:
    """A raw APNs device token is 64 hex characters; anything else is FCM."""
    if _APNS_RAW.match(token):
        return TokenKind.APNS_RAW
    return TokenKind.FCM_REGISTRATION


def mask_token(token: str) -> str:
    return f"{token[:8]}..." if len(token) > 8 else "***"


async def resolve_tokens(db: AsyncSession, user_id: uuid.UUID) -> list[str]:
    """Registered tokens, most recently refreshed first.

    The legacy single ``users.push_token`` is only used when the account
    has no device rows at all.
    """
    rows = (
        await db.execute(
            select(DeviceToken.token)
            .where(DeviceToken.user_id == user_id)
            .order_by(DeviceToken.updated_at.desc(), DeviceToken.created_at.desc())
            .limit(MAX_TOKENS_PER_USER)
        )
    ).scalars().all()
    tokens = [t for t in rows if t]
    if tokens:
        return tokens

    legacy = (await db.execute(select(User.push_token).where(User.id == user_id))).scalar_one_or_none()
    return [legacy] if legacy else []


async def register_device_token(db: AsyncSession, user_id: uuid.UUID, token: str, platform: str) -> None:
    """Insert the token or bump its ``updated_at`` so it sorts first."""
    now = utcnow()
    await db.execute(
        insert_ignoring_conflicts(
            db,
            DeviceToken,
            {
                "id": uuid.uuid4(),
                "user_id": user_id,
                "token": token,
                "platform": platform,
                "created_at": now,
                "updated_at": now,
            },
        )
    )
    await db.execute(
        update(DeviceToken)
        .where(DeviceToken.user_id == user_id, DeviceToken.token == token)
        .values(platform=platform, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    logger.info("Registered %s device token %s for user %s", platform, mask_token(token), user_id)


async def delete_token(db: AsyncSession, user_id: uuid.UUID, token: str) -> None:
    await db.execute(
        delete(DeviceToken)
        .where(DeviceToken.user_id == user_id, DeviceToken.token == token)
        .execution_options(synchronize_session=False)
    )
    logger.info("Removed push token %s for user %s", mask_token(token), user_id)

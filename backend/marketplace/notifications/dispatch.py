"""Deliver a push notification to every device of an account."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import PaymentProviderError, TokenInvalid
from marketplace.notifications import fcm
from marketplace.notifications.tokens import TokenKind, classify_token, delete_token, mask_token, resolve_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    sent: int = 0
    # Tokens that exist but cannot be delivered through FCM (raw APNs)
    undeliverable: int = 0
    # Tokens deleted after FCM rejected them permanently
    removed: int = 0


async def dispatch(
    db: AsyncSession,
    user_id: uuid.UUID,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    image_url: str | None = None,
) -> DispatchResult:
    """Send to every FCM token of ``user_id``; zero devices is not an error.

    Raises:
        PushNotConfigured: there are deliverable tokens but no usable
            service account.
    """
    tokens = await resolve_tokens(db, user_id)
    fcm_tokens = [t for t in tokens if classify_token(t) is TokenKind.FCM_REGISTRATION]
    undeliverable = len(tokens) - len(fcm_tokens)
    if undeliverable:
        logger.warning(
            "User %s has %d raw APNs token(s) that FCM cannot deliver to", user_id, undeliverable
        )
    if not fcm_tokens:
        return DispatchResult(undeliverable=undeliverable)

    sent = removed = 0
    async with fcm.get_fcm_client() as client:
        for token in fcm_tokens:
            try:
                await client.send(token, title, body, data=data, image_url=image_url)
            except TokenInvalid:
                await delete_token(db, user_id, token)
                removed += 1
            except PaymentProviderError as exc:
                logger.warning("Push to %s failed: %s", mask_token(token), exc.message)
            else:
                sent += 1

    logger.info("Push to user %s: %d sent, %d removed", user_id, sent, removed)
    return DispatchResult(sent=sent, undeliverable=undeliverable, removed=removed)

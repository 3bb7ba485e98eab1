"""In-app notifications with a best-effort push."""

import logging
import uuid

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import MarketplaceError
from marketplace.models.notification import Notification
from marketplace.notifications.dispatch import dispatch

logger = logging.getLogger(__name__)

# type -> (title, body)
TEMPLATES: dict[str, tuple[str, str]] = {
    "payment_approved": ("Payment confirmed", "Your payment was confirmed."),
    "payment_rejected": ("Payment rejected", "Your payment could not be verified."),
    "listing_published": ("Listing published", "Your listing is now visible."),
    "reservation_request": ("New reservation request", "Someone wants to book your listing."),
    "reservation_approved": ("Reservation approved", "Your reservation request was approved."),
    "reservation_rejected": ("Reservation declined", "Your reservation request was declined."),
    "reservation_cancelled": ("Reservation cancelled", "A reservation on your listing was cancelled."),
}


async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: str,
    *,
    actor_id: uuid.UUID | None = None,
    entity_id: uuid.UUID | None = None,
    body: str | None = None,
) -> Notification:
    """Record an in-app notification and push it to the user's devices.

    A failed push is logged and never propagates: the business change that
    triggered the notification has already happened. ``body`` replaces the
    template text of the push, e.g. with a rejection reason.
    """
    notification = Notification(user_id=user_id, actor_id=actor_id, type=type, entity_id=entity_id)
    db.add(notification)
    await db.flush()

    title, default_body = TEMPLATES.get(type, ("Notification", ""))
    data = {"type": type}
    if entity_id is not None:
        data["entity_id"] = str(entity_id)
    try:
        await dispatch(db, user_id, title, body or default_body, data=data)
    except (MarketplaceError, httpx.HTTPError):
        logger.exception("Push for %s notification to user %s failed", type, user_id)
    return notification

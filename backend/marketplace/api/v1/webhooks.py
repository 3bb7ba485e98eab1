"""Stripe webhook endpoint: receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, HTTPException, Request, status

from marketplace.billing.stripe_client import construct_webhook_event, parse_unsigned_event
from marketplace.billing.webhooks import (
    handle_checkout_failed,
    handle_checkout_session_completed,
    handle_invoice_paid,
    handle_subscription_deleted,
)
from marketplace.config import settings
from marketplace.database import async_session_factory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])

# Map event types to handler functions
EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_session_completed,
    "checkout.session.async_payment_succeeded": handle_checkout_session_completed,
    "checkout.session.async_payment_failed": handle_checkout_failed,
    "checkout.session.expired": handle_checkout_failed,
    "payment_intent.payment_failed": handle_checkout_failed,
    "invoice.paid": handle_invoice_paid,
    "customer.subscription.deleted": handle_subscription_deleted,
}


def _read_event(payload: bytes, sig_header: str | None) -> stripe.Event:
    if not settings.stripe_webhook_secret:
        logger.warning("No webhook secret configured; accepting unsigned event")
        return parse_unsigned_event(payload)
    if not sig_header:
        raise stripe.SignatureVerificationError("Missing signature header", sig_header)
    return construct_webhook_event(payload, sig_header)


@router.post("/stripe")
async def stripe_webhook(request: Request) -> dict:
    """Receive and process Stripe webhook events."""
    # Raw bytes, the signature covers the exact body
    payload = await request.body()
    if not payload.strip():
        return {"received": True}

    try:
        event = _read_event(payload, request.headers.get("stripe-signature"))
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.debug("Unhandled webhook event type: %s", event.type)
        return {"received": True}

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)

    # Own session, the webhook has no auth context
    async with async_session_factory() as db:
        try:
            await handler(db, event)
            await db.commit()
        except Exception as e:
            await db.rollback()
            logger.exception("Error processing webhook event %s", event.id)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Webhook processing failed",
            ) from e

    return {"received": True}

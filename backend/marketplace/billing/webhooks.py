"""Stripe webhook event handlers: reconcile payments, credits and plans."""

import logging
import uuid
from datetime import datetime, timedelta, timezone

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.billing.plans import get_product
from marketplace.billing.stripe_client import get_subscription, metadata_value
from marketplace.database import utcnow
from marketplace.errors import Forbidden, IdempotentNoOp, TransactionClaimed
from marketplace.policy.pricing import from_minor_units
from marketplace.services import entitlement_service, payment_service

logger = logging.getLogger(__name__)

# Fallback period when Stripe does not report one
_DEFAULT_PERIOD = timedelta(days=30)


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


def _field(obj, key: str):
    try:
        return obj[key]
    except (KeyError, TypeError, AttributeError):
        return None


def _as_uuid(value: str | None) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        return None


def _get_period(stripe_sub) -> tuple[datetime | None, datetime | None]:
    """Current period start/end, read from the first subscription item.

    Since Stripe API 2025-08-27 the period lives on the item rather than on
    the subscription.
    """
    items = _field(stripe_sub, "items")
    data = _field(items, "data") if items is not None else None
    if data:
        item = data[0]
        return _ts_to_naive(_field(item, "current_period_start")), _ts_to_naive(_field(item, "current_period_end"))
    return _ts_to_naive(_field(stripe_sub, "current_period_start")), _ts_to_naive(
        _field(stripe_sub, "current_period_end")
    )


def _invoice_subscription_id(invoice) -> str | None:
    """Subscription id of an invoice, on both old and new API versions."""
    subscription_id = _field(invoice, "subscription")
    if subscription_id:
        return subscription_id if isinstance(subscription_id, str) else _field(subscription_id, "id")
    details = _field(_field(invoice, "parent"), "subscription_details")
    return _field(details, "subscription") if details is not None else None


async def _period_for(subscription_id: str | None) -> tuple[datetime | None, datetime]:
    if subscription_id:
        start, end = _get_period(await get_subscription(subscription_id))
        if end is not None:
            return start, end
    start = utcnow()
    return start, start + _DEFAULT_PERIOD


async def _handle_product_purchase(db: AsyncSession, session, user_id: uuid.UUID, product_id: str) -> None:
    product = get_product(product_id)
    if product is None:
        logger.warning("Checkout %s references unknown product %s", session.id, product_id)
        return

    transaction_id = metadata_value(session, "transaction_ref") or session.id
    subscription_id = _field(session, "subscription") if product.is_subscription else None
    active_until = None
    if product.is_subscription:
        _, active_until = await _period_for(subscription_id)

    try:
        await entitlement_service.apply_product_purchase(
            db,
            user_id,
            product,
            transaction_id=transaction_id,
            original_transaction_id=session.id,
            source="stripe",
            active_until=active_until,
            stripe_subscription_id=subscription_id,
        )
    except IdempotentNoOp:
        logger.debug("Checkout %s already recorded", session.id)
        return
    except TransactionClaimed:
        logger.warning("Checkout %s transaction claimed by another account", session.id)
        return
    logger.info("Product %s granted to user %s (checkout %s)", product.product_id, user_id, session.id)


async def handle_checkout_session_completed(db: AsyncSession, event: stripe.Event) -> None:
    """Handle checkout.session.completed: complete a listing payment or grant a product."""
    session = event.data.object
    user_id = _as_uuid(metadata_value(session, "user_id"))
    if user_id is None:
        logger.warning("Checkout session %s has no user_id metadata, skipping", session.id)
        return

    if _field(session, "payment_status") not in ("paid", "no_payment_required"):
        # Delayed payment methods complete later through async_payment_succeeded
        logger.info("Checkout session %s completed but not paid yet", session.id)
        return

    product_id = metadata_value(session, "product_id")
    if product_id and metadata_value(session, "credits_amount") is not None:
        await _handle_product_purchase(db, session, user_id, product_id)
        return

    transaction_ref = metadata_value(session, "transaction_ref")
    if not transaction_ref:
        logger.warning("Checkout session %s has no transaction_ref metadata, skipping", session.id)
        return

    currency = (_field(session, "currency") or "xof").upper()
    amount_total = _field(session, "amount_total")
    try:
        await payment_service.complete_payment(
            db,
            transaction_ref,
            user_id,
            amount=from_minor_units(amount_total, currency) if amount_total is not None else None,
            currency=currency,
            payment_method="stripe",
            listing_type=metadata_value(session, "listing_type"),
            property_id=_as_uuid(metadata_value(session, "property_id")),
            provider_session_id=session.id,
        )
    except IdempotentNoOp:
        logger.debug("Payment %s already completed (event %s)", transaction_ref, event.id)
    except Forbidden:
        logger.warning(
            "Payment %s belongs to another account than user %s (event %s), ignoring",
            transaction_ref,
            user_id,
            event.id,
        )


async def handle_checkout_failed(db: AsyncSession, event: stripe.Event) -> None:
    """Handle checkout.session.expired and payment_intent.payment_failed: pending → failed."""
    obj = event.data.object
    transaction_ref = metadata_value(obj, "transaction_ref")
    user_id = _as_uuid(metadata_value(obj, "user_id"))
    if not transaction_ref or user_id is None:
        logger.debug("Event %s carries no payment reference, skipping", event.id)
        return
    await payment_service.fail_payment(db, transaction_ref, user_id)


async def handle_invoice_paid(db: AsyncSession, event: stripe.Event) -> None:
    """Handle invoice.paid: start a new period and reset the monthly allowance."""
    invoice = event.data.object
    subscription_id = _invoice_subscription_id(invoice)
    if not subscription_id:
        logger.info("Invoice %s has no subscription (one-time), skipping", invoice.id)
        return

    stripe_sub = await get_subscription(subscription_id)
    period_start, period_end = _get_period(stripe_sub)
    if await entitlement_service.renew_subscription(db, subscription_id, period_start, period_end):
        logger.info("Invoice paid: subscription %s renewed until %s", subscription_id, period_end)
        return

    # Renewal can arrive before checkout.session.completed for the first invoice
    user_id = _as_uuid(metadata_value(stripe_sub, "user_id"))
    product = get_product(metadata_value(stripe_sub, "product_id") or "")
    if user_id is None or product is None or not product.is_subscription:
        logger.warning("No local subscription for Stripe subscription %s (invoice %s)", subscription_id, invoice.id)
        return
    await entitlement_service.activate_subscription(
        db,
        user_id,
        product.subscription_type,
        period_end,
        period_start=period_start,
        stripe_subscription_id=subscription_id,
    )


async def handle_subscription_deleted(db: AsyncSession, event: stripe.Event) -> None:
    """Handle customer.subscription.deleted: stop the plan's allowance."""
    stripe_sub = event.data.object
    if not await entitlement_service.deactivate_subscription(db, stripe_sub.id):
        logger.warning("No local subscription found for Stripe subscription %s (delete event)", stripe_sub.id)

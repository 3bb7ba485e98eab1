"""Async Stripe API wrapper for hosted checkout."""

import json
import logging
from urllib.parse import urlencode

import stripe
from stripe import StripeClient

from marketplace.billing.plans import Product
from marketplace.config import settings

logger = logging.getLogger(__name__)

# How far back confirmation looks when the session id was never stored
SESSION_SCAN_LIMIT = 100


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )


def metadata_value(obj, key: str) -> str | None:
    """Read a metadata entry from a Stripe object or plain dict.

    Bracket access only: Stripe objects do not reliably behave like dicts.
    """
    try:
        value = obj["metadata"][key]
    except (KeyError, TypeError, AttributeError):
        return None
    return value or None


def return_urls(
    base: str | None,
    *,
    mode: str,
    transaction_ref: str,
    listing_type: str | None = None,
    property_id: str | None = None,
    cancelled: bool = False,
) -> str:
    """Return URL carrying what the client needs to resume after the redirect."""
    base = base or f"{settings.frontend_url}/publish"
    params = {"mode": mode, "transactionRef": transaction_ref, "payment": "cancelled" if cancelled else "success"}
    if listing_type:
        params["listingType"] = listing_type
    if property_id:
        params["propertyId"] = property_id
    separator = "&" if "?" in base else "?"
    url = f"{base}{separator}{urlencode(params)}"
    if not cancelled:
        # Stripe substitutes the placeholder itself; it must stay unescaped
        url += "&session_id={CHECKOUT_SESSION_ID}"
    return url


async def create_listing_checkout_session(
    *,
    transaction_ref: str,
    user_id: str,
    email: str,
    amount_minor: int,
    currency: str,
    listing_type: str,
    property_id: str | None,
    success_url: str,
    cancel_url: str,
) -> stripe.checkout.Session:
    """One-off payment for publishing a listing."""
    client = get_stripe_client()
    metadata = {
        "user_id": user_id,
        "transaction_ref": transaction_ref,
        "listing_type": listing_type,
        "property_id": property_id or "",
    }
    logger.info("Creating listing checkout session for ref %s", transaction_ref)
    return await client.v1.checkout.sessions.create_async(
        params={
            "mode": "payment",
            "payment_method_types": ["card"],
            "customer_email": email,
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "product_data": {"name": f"Listing publication ({listing_type})"},
                        "unit_amount": amount_minor,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": transaction_ref,
            "metadata": metadata,
            # Lets payment_intent.payment_failed events be traced to the payment
            "payment_intent_data": {"metadata": metadata},
        }
    )


async def create_credits_checkout_session(
    *,
    product: Product,
    transaction_ref: str,
    user_id: str,
    email: str,
    success_url: str,
    cancel_url: str,
) -> stripe.checkout.Session:
    """Checkout for a credit pack (one-off) or a monthly plan (subscription)."""
    client = get_stripe_client()
    price_data = {
        "currency": product.currency.lower(),
        "product_data": {"name": product.name},
        "unit_amount": product.amount,
    }
    if product.is_subscription:
        price_data["recurring"] = {"interval": "month"}

    metadata = {
        "user_id": user_id,
        "transaction_ref": transaction_ref,
        "product_id": product.product_id,
        "credits_amount": str(product.credits),
        "is_subscription": "true" if product.is_subscription else "false",
    }
    params = {
        "mode": "subscription" if product.is_subscription else "payment",
        "payment_method_types": ["card"],
        "customer_email": email,
        "line_items": [{"price_data": price_data, "quantity": 1}],
        "success_url": success_url,
        "cancel_url": cancel_url,
        "client_reference_id": transaction_ref,
        "metadata": metadata,
    }
    if product.is_subscription:
        # Copied onto the subscription so renewals can be traced to the user
        params["subscription_data"] = {"metadata": metadata}

    logger.info("Creating credits checkout session for product %s", product.product_id)
    return await client.v1.checkout.sessions.create_async(params=params)


async def retrieve_checkout_session(session_id: str) -> stripe.checkout.Session:
    client = get_stripe_client()
    return await client.v1.checkout.sessions.retrieve_async(session_id)


async def find_session_by_transaction_ref(transaction_ref: str) -> stripe.checkout.Session | None:
    """Scan recent sessions for one tagged with ``transaction_ref``."""
    client = get_stripe_client()
    sessions = await client.v1.checkout.sessions.list_async(params={"limit": SESSION_SCAN_LIMIT})
    for session in sessions.data:
        if metadata_value(session, "transaction_ref") == transaction_ref:
            return session
    return None


async def get_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription by ID."""
    client = get_stripe_client()
    return await client.v1.subscriptions.retrieve_async(subscription_id)


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)


def parse_unsigned_event(payload: bytes) -> stripe.Event:
    """Build an event from a raw JSON body without verification.

    Only used when no webhook secret is configured (local development).

    Raises:
        ValueError: the body is not a JSON event.
    """
    data = json.loads(payload)
    if not isinstance(data, dict) or "type" not in data:
        raise ValueError("Not a Stripe event")
    return stripe.Event.construct_from(data, settings.stripe_secret_key)

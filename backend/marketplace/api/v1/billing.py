"""Billing API endpoints: entitlements, hosted checkout, mobile money and App Store receipts."""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_current_user, get_db
from marketplace.billing import app_store
from marketplace.billing.plans import PRODUCTS, SINGLE_LISTING_PRODUCT, get_product
from marketplace.billing.stripe_client import (
    create_credits_checkout_session,
    create_listing_checkout_session,
    find_session_by_transaction_ref,
    metadata_value,
    retrieve_checkout_session,
    return_urls,
)
from marketplace.config import settings
from marketplace.errors import (
    ErrorKind,
    Forbidden,
    IdempotentNoOp,
    MarketplaceError,
    NotFound,
    NotYetPaid,
    PaymentProviderError,
    ReceiptInvalid,
    SessionNotFound,
    TransactionClaimed,
    ValidationError,
    classify_provider_error,
    raise_http,
)
from marketplace.models.listing import Listing
from marketplace.models.payment import PAYMENT_COMPLETED, Payment
from marketplace.models.user import User
from marketplace.policy.entitlements import needs_payment
from marketplace.policy.pricing import to_minor_units
from marketplace.schemas.billing import (
    AppleCreditsRequest,
    AppleCreditsResponse,
    AppleReceiptRequest,
    AppleReceiptResponse,
    CheckoutRequest,
    CheckoutResponse,
    ConfirmRequest,
    ConfirmResponse,
    CreditsCheckoutRequest,
    CreditsCheckoutResponse,
    EntitlementsResponse,
    MobileMoneyRequest,
    MobileMoneyResponse,
    ProductResponse,
)
from marketplace.services import entitlement_service, payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _stripe_failure(exc: stripe.StripeError) -> MarketplaceError:
    """Translate a Stripe SDK error without leaking its message."""
    logger.error("Stripe error: %s", type(exc).__name__)
    kind = classify_provider_error("stripe", exc)
    if kind is ErrorKind.VALIDATION:
        return ValidationError("Payment request rejected by the processor")
    return PaymentProviderError()


def _receipt_error(exc: MarketplaceError) -> JSONResponse:
    # Body is {error, status, ...} so clients can show Apple's status code
    return JSONResponse(status_code=exc.status_code, content=exc.to_detail())


def _ms_to_naive(ms: int | None) -> datetime | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, timezone.utc).replace(tzinfo=None)


async def _check_payable_listing(db: AsyncSession, property_id: uuid.UUID, user: User) -> None:
    listing = await db.get(Listing, property_id)
    if listing is None or listing.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found")
    if listing.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Listing is already active")


# ---------------------------------------------------------------------------
# Entitlements and catalogue
# ---------------------------------------------------------------------------


@router.get("/entitlements", response_model=EntitlementsResponse)
async def get_entitlements(
    listing_type: str | None = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EntitlementsResponse:
    """What the caller can still publish without paying."""
    limits = await entitlement_service.get_listing_limits(db)
    snapshot = await entitlement_service.build_snapshot(db, current_user, listing_type)
    return EntitlementsResponse(
        remaining_free_listings=snapshot.remaining_free_listings,
        available_credits=snapshot.available_credits,
        has_active_subscription=snapshot.has_active_subscription,
        subscription_type=snapshot.subscription_type,
        subscription_credits_remaining=snapshot.subscription_credits_remaining,
        needs_payment=needs_payment(snapshot, limits.enabled),
        limit_enabled=limits.enabled,
        price_per_extra_listing=limits.price_per_extra_listing,
        currency=limits.currency,
    )


@router.get("/products", response_model=list[ProductResponse])
async def list_products(db: AsyncSession = Depends(get_db)) -> list[ProductResponse]:
    """Credit packs and plans (public, no auth required)."""
    allowances = await entitlement_service.get_subscription_limits(db)
    return [
        ProductResponse(
            product_id=p.product_id,
            name=p.name,
            credits=allowances.get(p.subscription_type, 0) if p.is_subscription else p.credits,
            amount=p.amount,
            currency=p.currency,
            is_subscription=p.is_subscription,
        )
        for p in PRODUCTS.values()
    ]


# ---------------------------------------------------------------------------
# Web rail
# ---------------------------------------------------------------------------


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CheckoutResponse:
    """Start a hosted checkout for publishing one listing."""
    currency = body.currency.upper()
    limits = await entitlement_service.get_listing_limits(db)
    if currency == limits.currency and body.amount < limits.price_per_extra_listing:
        raise_http(ValidationError("Amount is below the listing price", minimum=limits.price_per_extra_listing))

    if body.property_id is not None:
        await _check_payable_listing(db, body.property_id, current_user)

    payment = await payment_service.create_pending_payment(
        db,
        current_user.id,
        amount=body.amount,
        currency=currency,
        payment_method="stripe",
        listing_type=body.listing_type,
        property_id=body.property_id,
    )
    # Visible before Stripe can call back
    await db.commit()

    ref = payment.transaction_ref
    property_id = str(body.property_id) if body.property_id else None
    url_fields = {"mode": "listing", "transaction_ref": ref, "listing_type": body.listing_type, "property_id": property_id}
    try:
        session = await create_listing_checkout_session(
            transaction_ref=ref,
            user_id=str(current_user.id),
            email=current_user.email,
            amount_minor=to_minor_units(body.amount, currency),
            currency=currency,
            listing_type=body.listing_type,
            property_id=property_id,
            success_url=return_urls(body.success_url, **url_fields),
            cancel_url=return_urls(body.cancel_url, cancelled=True, **url_fields),
        )
    except stripe.StripeError as exc:
        await payment_service.fail_payment(db, ref, current_user.id)
        await db.commit()
        raise_http(_stripe_failure(exc))

    payment.provider_session_id = session.id
    await db.flush()
    logger.info("Checkout session %s created for payment %s", session.id, ref)
    return CheckoutResponse(checkout_url=session.url, transaction_ref=ref, session_id=session.id)


@router.post("/confirm", response_model=ConfirmResponse)
async def confirm_checkout(
    body: ConfirmRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ConfirmResponse:
    """Reconcile a payment with Stripe on demand, when the webhook is late."""
    payment = (
        await db.execute(
            select(Payment).where(
                Payment.transaction_ref == body.transaction_ref,
                Payment.user_id == current_user.id,
            )
        )
    ).scalar_one_or_none()
    if payment is None:
        raise_http(NotFound("Payment not found"))
    if payment.status == PAYMENT_COMPLETED:
        return ConfirmResponse(ok=True, property_id=payment.property_id)

    try:
        session = None
        if payment.provider_session_id:
            try:
                session = await retrieve_checkout_session(payment.provider_session_id)
            except stripe.InvalidRequestError:
                # Expired or purged session id: look the reference up instead
                logger.info("Checkout session %s not retrievable, scanning by reference", payment.provider_session_id)
        if session is None:
            session = await find_session_by_transaction_ref(body.transaction_ref)
    except stripe.StripeError as exc:
        raise_http(_stripe_failure(exc))

    if session is None:
        raise_http(SessionNotFound())
    if metadata_value(session, "user_id") != str(current_user.id):
        logger.warning("Checkout session %s belongs to another account", session.id)
        raise_http(Forbidden("Checkout session belongs to another account"))

    paid = session.payment_status == "paid"
    complete = session.status == "complete"
    if not (paid and complete):
        raise_http(NotYetPaid(payment_status=session.payment_status, session_status=session.status))

    try:
        outcome = await payment_service.complete_payment(
            db,
            body.transaction_ref,
            current_user.id,
            provider_session_id=session.id,
        )
        property_id = outcome.payment.property_id
    except IdempotentNoOp:
        property_id = payment.property_id
    except MarketplaceError as exc:
        raise_http(exc)
    return ConfirmResponse(ok=True, property_id=property_id)


@router.post("/credits/checkout", response_model=CreditsCheckoutResponse)
async def create_credits_checkout(
    body: CreditsCheckoutRequest,
    current_user: User = Depends(get_current_user),
) -> CreditsCheckoutResponse:
    """Hosted checkout for a credit pack or a monthly plan."""
    product = get_product(body.product_id)
    if product is None:
        raise_http(ValidationError("Unknown product", product_id=body.product_id))

    ref = payment_service.new_transaction_ref()
    base = f"{settings.frontend_url}/credits"
    try:
        session = await create_credits_checkout_session(
            product=product,
            transaction_ref=ref,
            user_id=str(current_user.id),
            email=current_user.email,
            success_url=body.success_url or return_urls(base, mode="credits", transaction_ref=ref),
            cancel_url=body.cancel_url or return_urls(base, mode="credits", transaction_ref=ref, cancelled=True),
        )
    except stripe.StripeError as exc:
        raise_http(_stripe_failure(exc))
    return CreditsCheckoutResponse(checkout_url=session.url, session_id=session.id)


# ---------------------------------------------------------------------------
# Mobile money rail (verified by an administrator)
# ---------------------------------------------------------------------------


@router.post("/mobile-money", response_model=MobileMoneyResponse, status_code=status.HTTP_201_CREATED)
async def create_mobile_money_payment(
    body: MobileMoneyRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MobileMoneyResponse:
    """Record a mobile money transfer; nothing is granted until an admin approves it.

    With ``product_id`` the transfer buys a credit pack or plan, otherwise it
    pays for one listing publication.
    """
    currency = body.currency.upper()
    if body.product_id is not None:
        product = get_product(body.product_id)
        if product is None:
            raise_http(ValidationError("Unknown product", product_id=body.product_id))
        if currency == product.currency and body.amount < product.amount:
            raise_http(ValidationError("Amount is below the product price", minimum=product.amount))
        product_id = product.product_id
        ref = payment_service.new_transaction_ref("MM")
    else:
        limits = await entitlement_service.get_listing_limits(db)
        if currency == limits.currency and body.amount < limits.price_per_extra_listing:
            raise_http(ValidationError("Amount is below the listing price", minimum=limits.price_per_extra_listing))
        if body.property_id is not None:
            await _check_payable_listing(db, body.property_id, current_user)
        product_id = None
        ref = payment_service.new_transaction_ref()

    payment = await payment_service.create_pending_payment(
        db,
        current_user.id,
        amount=body.amount,
        currency=currency,
        payment_method="mobile_money",
        listing_type=body.listing_type or "long_term",
        property_id=None if product_id else body.property_id,
        transaction_ref=ref,
        sender_phone=body.sender_phone,
        product_id=product_id,
    )
    return MobileMoneyResponse(payment_id=payment.id, transaction_ref=payment.transaction_ref, status=payment.status)


# ---------------------------------------------------------------------------
# Native rail (App Store)
# ---------------------------------------------------------------------------


@router.post("/apple/validate-receipt", response_model=AppleReceiptResponse)
async def validate_apple_receipt(
    body: AppleReceiptRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Verify an in-app purchase of a listing publication and grant it.

    Only the single-listing product is accepted here; packs and plans go
    through ``/apple/credits``. A transaction is redeemed on one of the two
    routes, never both.
    """
    product = get_product(body.product_id)
    if product is None or product.product_id != SINGLE_LISTING_PRODUCT:
        return _receipt_error(
            ValidationError("Only the single listing product can pay for a listing", product_id=body.product_id)
        )
    try:
        receipt = await app_store.verify_receipt(body.receipt_data)
        purchase = receipt.find(product.store_product_id)
    except (ReceiptInvalid, PaymentProviderError) as exc:
        return _receipt_error(exc)

    existing = await payment_service.get_payment_by_ref(db, purchase.transaction_id)
    if existing is not None:
        if existing.user_id != current_user.id:
            raise_http(TransactionClaimed())
        logger.debug("App Store transaction %s already processed", purchase.transaction_id)
        return AppleReceiptResponse(
            success=True, payment_id=existing.id, transaction_id=purchase.transaction_id, already_processed=True
        )
    redeemed = await entitlement_service.get_purchase_by_transaction(db, purchase.transaction_id)
    if redeemed is not None:
        if redeemed.user_id != current_user.id:
            raise_http(TransactionClaimed())
        logger.info("App Store transaction %s already redeemed as credits", purchase.transaction_id)
        return AppleReceiptResponse(success=True, transaction_id=purchase.transaction_id, already_processed=True)

    limits = await entitlement_service.get_listing_limits(db)
    try:
        outcome = await payment_service.complete_payment(
            db,
            purchase.transaction_id,
            current_user.id,
            amount=Decimal(limits.price_per_extra_listing),
            currency=limits.currency,
            payment_method="apple_iap",
            listing_type=body.listing_type or "long_term",
            property_id=body.property_id,
        )
    except IdempotentNoOp as exc:
        return AppleReceiptResponse(
            success=True,
            payment_id=exc.extra.get("payment_id"),
            transaction_id=purchase.transaction_id,
            already_processed=True,
        )
    except MarketplaceError as exc:
        raise_http(exc)

    logger.info("App Store purchase %s validated for user %s", purchase.transaction_id, current_user.id)
    return AppleReceiptResponse(success=True, payment_id=outcome.payment.id, transaction_id=purchase.transaction_id)


@router.post("/apple/credits", response_model=AppleCreditsResponse)
async def apple_credits(
    body: AppleCreditsRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Verify an in-app purchase of a credit pack or plan and record it."""
    product = get_product(body.product_id)
    if product is None:
        raise_http(ValidationError("Unknown product", product_id=body.product_id))
    try:
        receipt = await app_store.verify_receipt(body.receipt_data)
        purchase = receipt.find(product.store_product_id)
    except (ReceiptInvalid, PaymentProviderError) as exc:
        return _receipt_error(exc)

    paid = await payment_service.get_payment_by_ref(db, purchase.transaction_id)
    if paid is not None:
        if paid.user_id != current_user.id:
            raise_http(TransactionClaimed())
        logger.info("App Store transaction %s already paid for a listing", purchase.transaction_id)
        return AppleCreditsResponse(
            success=True, transaction_id=purchase.transaction_id, credits_added=0, already_processed=True
        )

    try:
        granted = await entitlement_service.apply_product_purchase(
            db,
            current_user.id,
            product,
            transaction_id=purchase.transaction_id,
            original_transaction_id=purchase.original_transaction_id,
            source="apple_iap",
            active_until=_ms_to_naive(purchase.expires_date_ms),
        )
    except IdempotentNoOp:
        return AppleCreditsResponse(
            success=True, transaction_id=purchase.transaction_id, credits_added=0, already_processed=True
        )
    except TransactionClaimed as exc:
        raise_http(exc)

    return AppleCreditsResponse(
        success=True, transaction_id=purchase.transaction_id, credits_added=granted.credits_amount
    )

"""Payment reconciliation: the one path that turns a payment into a grant.

The webhook, the on-demand confirmation and the native receipt rail all end
in :func:`complete_payment`. The conditional ``UPDATE`` on ``status`` (or the
insert-or-ignore on the unique ``transaction_ref``) is the serialization
point: only the caller whose write took effect grants anything.
"""

import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.billing.plans import get_product
from marketplace.database import insert_ignoring_conflicts, utcnow
from marketplace.errors import Forbidden, IdempotentNoOp, TransactionClaimed, ValidationError
from marketplace.models.listing import Listing
from marketplace.models.payment import PAYMENT_COMPLETED, PAYMENT_FAILED, PAYMENT_PENDING, Payment
from marketplace.notifications.service import notify
from marketplace.services import entitlement_service

logger = logging.getLogger(__name__)

# Ledger row of a completed listing payment, left unspent when no listing was activated
LISTING_PAYMENT_PRODUCT = "listing.payment"
LISTING_PAYMENT_SOURCE = "listing_payment"

SUBSCRIPTION_PERIOD = timedelta(days=30)


@dataclass(frozen=True)
class CompletionOutcome:
    payment: Payment
    activated_listing_id: uuid.UUID | None = None
    credit_granted: bool = False
    voided: int = 0


def new_transaction_ref(prefix: str = "LZ") -> str:
    """``<prefix>-<epoch ms>-<random>``, unique enough to key a payment attempt."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)}"


async def get_payment_by_ref(db: AsyncSession, transaction_ref: str) -> Payment | None:
    result = await db.execute(
        select(Payment).where(Payment.transaction_ref == transaction_ref).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def create_pending_payment(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    amount: Decimal,
    currency: str,
    payment_method: str,
    listing_type: str | None,
    property_id: uuid.UUID | None,
    transaction_ref: str | None = None,
    sender_phone: str | None = None,
    product_id: str | None = None,
) -> Payment:
    payment = Payment(
        user_id=user_id,
        amount=amount,
        currency=currency.upper(),
        status=PAYMENT_PENDING,
        payment_method=payment_method,
        transaction_ref=transaction_ref or new_transaction_ref(),
        listing_type=listing_type,
        property_id=property_id,
        sender_phone=sender_phone,
        product_id=product_id,
    )
    db.add(payment)
    await db.flush()
    logger.info("Pending %s payment %s for user %s", payment_method, payment.transaction_ref, user_id)
    return payment


async def _mark_completed(db: AsyncSession, transaction_ref: str, user_id: uuid.UUID) -> bool:
    result = await db.execute(
        update(Payment)
        .where(
            Payment.transaction_ref == transaction_ref,
            Payment.user_id == user_id,
            Payment.status != PAYMENT_COMPLETED,
        )
        .values(status=PAYMENT_COMPLETED, completed_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _insert_completed(db: AsyncSession, transaction_ref: str, user_id: uuid.UUID, **fields) -> bool:
    now = utcnow()
    result = await db.execute(
        insert_ignoring_conflicts(
            db,
            Payment,
            {
                "id": uuid.uuid4(),
                "user_id": user_id,
                "transaction_ref": transaction_ref,
                "status": PAYMENT_COMPLETED,
                "completed_at": now,
                **fields,
            },
        )
    )
    return result.rowcount == 1


async def void_other_pending(
    db: AsyncSession,
    user_id: uuid.UUID,
    property_id: uuid.UUID,
    keep_ref: str | None = None,
) -> int:
    """Fail every other pending payment for the same listing and account."""
    stmt = update(Payment).where(
        Payment.user_id == user_id,
        Payment.property_id == property_id,
        Payment.status == PAYMENT_PENDING,
    )
    if keep_ref is not None:
        stmt = stmt.where(Payment.transaction_ref != keep_ref)
    result = await db.execute(stmt.values(status=PAYMENT_FAILED).execution_options(synchronize_session=False))
    if result.rowcount:
        logger.info("Voided %d straggling payment(s) for listing %s", result.rowcount, property_id)
    return result.rowcount


async def activate_listing(
    db: AsyncSession,
    listing_id: uuid.UUID,
    owner_id: uuid.UUID,
    source: str,
) -> bool:
    """Flip an inactive listing to active; False if it already was (or is gone)."""
    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.owner_id == owner_id, Listing.is_active.is_(False))
        .values(is_active=True, entitlement_source=source, published_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _record_redemption(db: AsyncSession, payment: Payment, *, spent: bool) -> None:
    """Write the ledger row of a listing payment, already spent if it activated the listing.

    The row is keyed by the payment's reference, so the same vendor
    transaction can never be redeemed again as credits.

    Raises:
        TransactionClaimed: the reference was already redeemed.
    """
    try:
        await entitlement_service.grant_credits(
            db,
            payment.user_id,
            product_id=LISTING_PAYMENT_PRODUCT,
            transaction_id=payment.transaction_ref,
            credits=1,
            credits_used=1 if spent else 0,
            source=LISTING_PAYMENT_SOURCE,
        )
    except IdempotentNoOp as exc:
        logger.warning("Transaction %s was already redeemed as credits", payment.transaction_ref)
        raise TransactionClaimed("Transaction already redeemed") from exc


async def _grant_product(db: AsyncSession, payment: Payment) -> None:
    product = get_product(payment.product_id)
    if product is None:
        raise ValidationError("Unknown product", product_id=payment.product_id)
    active_until = utcnow() + SUBSCRIPTION_PERIOD if product.is_subscription else None
    try:
        await entitlement_service.apply_product_purchase(
            db,
            payment.user_id,
            product,
            transaction_id=payment.transaction_ref,
            source=payment.payment_method,
            active_until=active_until,
        )
    except IdempotentNoOp as exc:
        raise TransactionClaimed("Transaction already redeemed") from exc
    logger.info("Product %s granted by payment %s", product.product_id, payment.transaction_ref)


async def complete_payment(
    db: AsyncSession,
    transaction_ref: str,
    user_id: uuid.UUID,
    *,
    amount: Decimal | None = None,
    currency: str | None = None,
    payment_method: str = "stripe",
    listing_type: str | None = None,
    property_id: uuid.UUID | None = None,
    provider_session_id: str | None = None,
    actor_id: uuid.UUID | None = None,
) -> CompletionOutcome:
    """Move ``transaction_ref`` to completed and grant what it paid for.

    The keyword fields are only used when no local row exists yet, e.g. a
    webhook that beat the checkout request's commit; they come from the
    processor's own metadata. ``actor_id`` is who approved it, when that is
    not the payer (an admin settling a mobile money transfer).

    A payment that already failed can still complete: the processor may
    report a success after the client gave up on it.

    Raises:
        IdempotentNoOp: the payment was already completed by someone else.
        Forbidden: the reference belongs to another account.
        TransactionClaimed: the reference was already redeemed as credits.
    """
    won = await _mark_completed(db, transaction_ref, user_id)
    if not won:
        existing = await get_payment_by_ref(db, transaction_ref)
        if existing is None:
            won = await _insert_completed(
                db,
                transaction_ref,
                user_id,
                amount=amount if amount is not None else Decimal(0),
                currency=(currency or "XOF").upper(),
                payment_method=payment_method,
                listing_type=listing_type,
                property_id=property_id,
                provider_session_id=provider_session_id,
            )
            if won:
                logger.info("Payment %s created from processor metadata", transaction_ref)
            else:
                # A concurrent writer inserted the row between our read and insert
                won = await _mark_completed(db, transaction_ref, user_id)
            existing = await get_payment_by_ref(db, transaction_ref)

        if existing is not None and existing.user_id != user_id:
            logger.warning("Payment %s does not belong to user %s", transaction_ref, user_id)
            raise Forbidden("Payment belongs to another account")
        if not won:
            logger.debug("Payment %s already completed, nothing to grant", transaction_ref)
            raise IdempotentNoOp(
                payment_id=str(existing.id) if existing else None,
                property_id=str(existing.property_id) if existing and existing.property_id else None,
            )

    payment = await get_payment_by_ref(db, transaction_ref)
    logger.info("Payment %s completed for user %s", transaction_ref, user_id)

    activated = None
    voided = 0
    if payment.product_id is not None:
        await _grant_product(db, payment)
    else:
        if payment.property_id is not None:
            if await activate_listing(db, payment.property_id, user_id, "payment"):
                activated = payment.property_id
                logger.info("Listing %s activated by payment %s", payment.property_id, transaction_ref)
            voided = await void_other_pending(db, user_id, payment.property_id, keep_ref=transaction_ref)
        # No listing to activate (or it was already active): the payment buys one credit
        await _record_redemption(db, payment, spent=activated is not None)

    await notify(db, user_id, "payment_approved", actor_id=actor_id or user_id, entity_id=payment.id)
    return CompletionOutcome(
        payment=payment,
        activated_listing_id=activated,
        credit_granted=activated is None,
        voided=voided,
    )


async def fail_payment(db: AsyncSession, transaction_ref: str, user_id: uuid.UUID | None = None) -> bool:
    """Pending → failed. Completed and failed rows are left untouched."""
    stmt = update(Payment).where(Payment.transaction_ref == transaction_ref, Payment.status == PAYMENT_PENDING)
    if user_id is not None:
        stmt = stmt.where(Payment.user_id == user_id)
    result = await db.execute(stmt.values(status=PAYMENT_FAILED).execution_options(synchronize_session=False))
    if result.rowcount:
        logger.info("Payment %s failed", transaction_ref)
    else:
        logger.debug("Payment %s not pending, failure ignored", transaction_ref)
    return result.rowcount == 1


async def pending_state(db: AsyncSession, listing: Listing) -> str:
    """Why a listing is (not yet) visible, from its owner's point of view."""
    if listing.is_active:
        return "active"
    statuses = set(
        (
            await db.execute(
                select(Payment.status).where(
                    Payment.property_id == listing.id,
                    Payment.user_id == listing.owner_id,
                )
            )
        ).scalars()
    )
    if PAYMENT_PENDING in statuses:
        return "payment_pending"
    if PAYMENT_FAILED in statuses:
        return "payment_failed"
    return "payment_not_attempted"


async def list_payments(
    db: AsyncSession,
    *,
    status: str | None = None,
    payment_method: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[Payment]:
    """Newest first, for the administrators' review queue."""
    stmt = select(Payment)
    if status is not None:
        stmt = stmt.where(Payment.status == status)
    if payment_method is not None:
        stmt = stmt.where(Payment.payment_method == payment_method)
    result = await db.execute(stmt.order_by(Payment.created_at.desc()).limit(limit).offset(offset))
    return list(result.scalars().all())

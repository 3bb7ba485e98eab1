"""Entitlement store: free quota, purchased credits and subscription allowance.

Every mutation here is a conditional write on the state it was decided
from, so two concurrent requests can never spend the same unit twice.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.billing.plans import Product
from marketplace.config import settings
from marketplace.database import insert_ignoring_conflicts, utcnow
from marketplace.errors import EntitlementExhausted, IdempotentNoOp, TransactionClaimed
from marketplace.models.app_setting import AppSetting
from marketplace.models.credit_purchase import CreditPurchase
from marketplace.models.listing import Listing
from marketplace.models.subscription import Subscription
from marketplace.models.user import User
from marketplace.policy.entitlements import (
    EntitlementSnapshot,
    EntitlementSource,
    free_listing_limit,
    remaining_free_listings,
)

logger = logging.getLogger(__name__)

LISTING_LIMIT_KEY = "listing_limit"
SUBSCRIPTION_LIMITS_KEY = "subscription_limits"


@dataclass(frozen=True)
class ListingLimits:
    """Free quota per account type and the price of one extra listing."""

    enabled: bool
    free_listings_default: int
    free_listings_agence: int
    free_listings_particulier: int
    free_listings_proprietaire: int
    free_listings_demarcheur: int
    price_per_extra_listing: int
    currency: str

    @classmethod
    def defaults(cls) -> "ListingLimits":
        return cls(
            enabled=settings.listing_limit_enabled,
            free_listings_default=settings.free_listings_default,
            free_listings_agence=settings.free_listings_agence,
            free_listings_particulier=settings.free_listings_particulier,
            free_listings_proprietaire=settings.free_listings_proprietaire,
            free_listings_demarcheur=settings.free_listings_demarcheur,
            price_per_extra_listing=settings.price_per_extra_listing,
            currency=settings.listing_currency,
        )

    def for_user_type(self, user_type: str | None) -> int:
        return free_listing_limit(self, user_type)

    def as_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Admin-configurable limits
# ---------------------------------------------------------------------------


async def _read_setting(db: AsyncSession, key: str) -> dict:
    row = await db.get(AppSetting, key)
    if row is None or not isinstance(row.value, dict):
        return {}
    return row.value


async def write_setting(db: AsyncSession, key: str, value: dict) -> None:
    row = await db.get(AppSetting, key)
    if row is None:
        db.add(AppSetting(key=key, value=value))
    else:
        row.value = value
    await db.flush()
    logger.info("Updated app setting %s", key)


async def get_listing_limits(db: AsyncSession) -> ListingLimits:
    """Stored listing limits merged over the configured defaults."""
    stored = await _read_setting(db, LISTING_LIMIT_KEY)
    merged = {**ListingLimits.defaults().as_dict(), **stored}
    return ListingLimits(**{k: merged[k] for k in ListingLimits.__dataclass_fields__})


async def get_subscription_limits(db: AsyncSession) -> dict[str, int]:
    """Monthly listing allowance per subscription type."""
    stored = await _read_setting(db, SUBSCRIPTION_LIMITS_KEY)
    return {
        "pro": int(stored.get("pro", settings.subscription_credits_pro)),
        "premium": int(stored.get("premium", settings.subscription_credits_premium)),
    }


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


def _subscription_is_current(now: datetime):
    return (
        Subscription.is_active.is_(True),
        or_(Subscription.active_until.is_(None), Subscription.active_until > now),
    )


async def count_free_listings(db: AsyncSession, user_id: uuid.UUID, listing_type: str | None = None) -> int:
    """Listings that ever consumed free quota; deactivating one does not refund it."""
    stmt = select(func.count()).select_from(Listing).where(
        Listing.owner_id == user_id,
        Listing.entitlement_source == EntitlementSource.FREE.value,
    )
    if listing_type:
        stmt = stmt.where(Listing.listing_type == listing_type)
    return (await db.execute(stmt)).scalar_one()


async def available_purchased_credits(db: AsyncSession, user_id: uuid.UUID) -> int:
    stmt = select(func.coalesce(func.sum(CreditPurchase.credits_amount - CreditPurchase.credits_used), 0)).where(
        CreditPurchase.user_id == user_id,
        CreditPurchase.status == "active",
        CreditPurchase.is_subscription.is_(False),
        CreditPurchase.credits_used < CreditPurchase.credits_amount,
    )
    return int((await db.execute(stmt)).scalar_one())


def account_lock(user_id: uuid.UUID) -> Select:
    """Row lock on the account that serializes its entitlement decisions.

    ``FOR NO KEY UPDATE`` so it does not conflict with the key-share lock an
    inserted listing already holds on its owner row. SQLite ignores it.
    """
    return select(User.id).where(User.id == user_id).with_for_update(key_share=True)


async def lock_account(db: AsyncSession, user_id: uuid.UUID) -> None:
    await db.execute(account_lock(user_id))


async def get_purchase_by_transaction(db: AsyncSession, transaction_id: str) -> CreditPurchase | None:
    result = await db.execute(
        select(CreditPurchase)
        .where(CreditPurchase.transaction_id == transaction_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_current_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    stmt = (
        select(Subscription)
        .where(Subscription.user_id == user_id, *_subscription_is_current(utcnow()))
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def build_snapshot(
    db: AsyncSession,
    user: User,
    listing_type: str | None = None,
) -> EntitlementSnapshot:
    """Read everything the policy engine needs for ``user``."""
    limits = await get_listing_limits(db)
    used_free = await count_free_listings(db, user.id, listing_type)
    credits = await available_purchased_credits(db, user.id)

    subscription = await get_current_subscription(db, user.id)
    sub_remaining = 0
    if subscription is not None:
        allowance = (await get_subscription_limits(db)).get(subscription.subscription_type, 0)
        sub_remaining = max(0, allowance - subscription.credits_used)

    return EntitlementSnapshot(
        remaining_free_listings=remaining_free_listings(limits.for_user_type(user.user_type), used_free),
        available_credits=credits,
        has_active_subscription=subscription is not None,
        subscription_type=subscription.subscription_type if subscription else None,
        subscription_credits_remaining=sub_remaining,
    )


# ---------------------------------------------------------------------------
# Consumption
# ---------------------------------------------------------------------------


async def _consume_subscription_credit(db: AsyncSession, user_id: uuid.UUID) -> None:
    subscription = await get_current_subscription(db, user_id)
    if subscription is None:
        raise EntitlementExhausted("No active subscription")
    allowance = (await get_subscription_limits(db)).get(subscription.subscription_type, 0)

    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.id == subscription.id,
            Subscription.credits_used < allowance,
            *_subscription_is_current(utcnow()),
        )
        .values(credits_used=Subscription.credits_used + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise EntitlementExhausted("Subscription allowance used up")


async def _consume_purchased_credit(db: AsyncSession, user_id: uuid.UUID) -> None:
    candidates = (
        await db.execute(
            select(CreditPurchase.id)
            .where(
                CreditPurchase.user_id == user_id,
                CreditPurchase.status == "active",
                CreditPurchase.is_subscription.is_(False),
                CreditPurchase.credits_used < CreditPurchase.credits_amount,
            )
            .order_by(CreditPurchase.created_at, CreditPurchase.id)
        )
    ).scalars().all()

    for purchase_id in candidates:
        result = await db.execute(
            update(CreditPurchase)
            .where(
                CreditPurchase.id == purchase_id,
                CreditPurchase.credits_used < CreditPurchase.credits_amount,
            )
            .values(credits_used=CreditPurchase.credits_used + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
    raise EntitlementExhausted("No purchased credit left")


async def consume_entitlement(
    db: AsyncSession,
    user: User,
    source: EntitlementSource,
    listing_type: str | None = None,
) -> None:
    """Spend one unit of ``source`` for ``user``.

    Free quota has no counter of its own: it is spent by the listing that
    records ``entitlement_source="free"``. The count runs under the account
    lock, after that row was flushed, so a concurrent publication that took
    the last slot is visible once it commits and this one fails.
    """
    if source is EntitlementSource.SUBSCRIPTION_CREDIT:
        await _consume_subscription_credit(db, user.id)
    elif source is EntitlementSource.PURCHASED_CREDIT:
        await _consume_purchased_credit(db, user.id)
    elif source is EntitlementSource.FREE:
        await lock_account(db, user.id)
        limits = await get_listing_limits(db)
        if await count_free_listings(db, user.id, listing_type) > limits.for_user_type(user.user_type):
            raise EntitlementExhausted("Free listing quota used up")
    else:
        raise EntitlementExhausted()
    logger.info("User %s consumed one %s entitlement", user.id, source.value)


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


async def grant_credits(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    product_id: str,
    transaction_id: str,
    credits: int,
    source: str,
    credits_used: int = 0,
    original_transaction_id: str | None = None,
    is_subscription: bool = False,
    expiration_date: datetime | None = None,
) -> CreditPurchase:
    """Record a credit purchase exactly once per vendor transaction id.

    The unique ``transaction_id`` is the ledger of every redeemed vendor
    transaction; a payment spent directly on a listing is recorded with
    ``credits_used == credits``.

    Raises:
        IdempotentNoOp: the transaction was already recorded for this user.
        TransactionClaimed: the transaction belongs to another account.
    """
    result = await db.execute(
        insert_ignoring_conflicts(
            db,
            CreditPurchase,
            {
                "id": uuid.uuid4(),
                "user_id": user_id,
                "product_id": product_id,
                "transaction_id": transaction_id,
                "original_transaction_id": original_transaction_id,
                "credits_amount": credits,
                "credits_used": credits_used,
                "purchase_date": utcnow(),
                "expiration_date": expiration_date,
                "is_subscription": is_subscription,
                "status": "active",
                "source": source,
            },
        )
    )
    purchase = (
        await db.execute(
            select(CreditPurchase)
            .where(CreditPurchase.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()

    if result.rowcount != 1:
        if purchase.user_id != user_id:
            logger.warning("Transaction %s already claimed by another account", transaction_id)
            raise TransactionClaimed()
        logger.debug("Credit transaction %s already recorded", transaction_id)
        raise IdempotentNoOp(purchase_id=str(purchase.id))

    logger.info("Granted %d credit(s) to user %s (%s, %s)", credits, user_id, product_id, source)
    return purchase


async def activate_subscription(
    db: AsyncSession,
    user_id: uuid.UUID,
    subscription_type: str,
    active_until: datetime | None,
    *,
    period_start: datetime | None = None,
    stripe_subscription_id: str | None = None,
) -> Subscription:
    """Create or refresh the user's single subscription row for a new period."""
    period_start = period_start or utcnow()
    await db.execute(
        insert_ignoring_conflicts(
            db,
            Subscription,
            {
                "id": uuid.uuid4(),
                "user_id": user_id,
                "subscription_type": subscription_type,
                "is_active": True,
                "period_start": period_start,
                "active_until": active_until,
                "credits_used": 0,
                "stripe_subscription_id": stripe_subscription_id,
            },
        )
    )
    values = {
        "subscription_type": subscription_type,
        "is_active": True,
        "period_start": period_start,
        "active_until": active_until,
        "credits_used": 0,
    }
    if stripe_subscription_id:
        values["stripe_subscription_id"] = stripe_subscription_id
    await db.execute(
        update(Subscription)
        .where(Subscription.user_id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    subscription = (
        await db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    logger.info("Subscription %s active for user %s until %s", subscription_type, user_id, active_until)
    return subscription


async def renew_subscription(
    db: AsyncSession,
    stripe_subscription_id: str,
    period_start: datetime | None,
    active_until: datetime | None,
) -> bool:
    """Start a new billing period: extend it and reset the monthly allowance."""
    result = await db.execute(
        update(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .values(is_active=True, period_start=period_start or utcnow(), active_until=active_until, credits_used=0)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


async def deactivate_subscription(db: AsyncSession, stripe_subscription_id: str) -> bool:
    result = await db.execute(
        update(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("Subscription %s deactivated", stripe_subscription_id)
    return result.rowcount > 0


async def apply_product_purchase(
    db: AsyncSession,
    user_id: uuid.UUID,
    product: Product,
    *,
    transaction_id: str,
    source: str,
    original_transaction_id: str | None = None,
    active_until: datetime | None = None,
    stripe_subscription_id: str | None = None,
) -> CreditPurchase:
    """Grant what a catalogue product buys, once per transaction.

    A credit pack adds purchased credits. A subscription is recorded as a
    purchase (for history) and (re)starts the subscription period with a
    fresh monthly allowance.
    """
    if not product.is_subscription:
        return await grant_credits(
            db,
            user_id,
            product_id=product.product_id,
            transaction_id=transaction_id,
            original_transaction_id=original_transaction_id,
            credits=product.credits,
            source=source,
        )

    allowance = (await get_subscription_limits(db)).get(product.subscription_type, 0)
    purchase = await grant_credits(
        db,
        user_id,
        product_id=product.product_id,
        transaction_id=transaction_id,
        original_transaction_id=original_transaction_id,
        credits=allowance,
        source=source,
        is_subscription=True,
        expiration_date=active_until,
    )
    await activate_subscription(
        db,
        user_id,
        product.subscription_type,
        active_until,
        stripe_subscription_id=stripe_subscription_id,
    )
    return purchase

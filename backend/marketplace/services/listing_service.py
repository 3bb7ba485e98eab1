"""Listing publication gated by the entitlement policy."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import utcnow
from marketplace.errors import Conflict, EntitlementExhausted
from marketplace.models.listing import Listing
from marketplace.models.user import User
from marketplace.policy.entitlements import EntitlementSource, resolve_entitlement_source
from marketplace.services import entitlement_service, payment_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublicationResult:
    listing: Listing
    needs_payment: bool
    amount_due: int | None = None
    currency: str | None = None


async def _spend(db: AsyncSession, owner: User, listing: Listing) -> EntitlementSource:
    """Charge ``listing`` to the best available source; NONE if nothing is left.

    The listing row must already be flushed: a free publication is counted
    from the listings themselves. Decisions for one account are serialized
    on its row until the transaction ends.
    """
    await entitlement_service.lock_account(db, owner.id)
    snapshot = await entitlement_service.build_snapshot(db, owner, listing.listing_type)
    source = resolve_entitlement_source(snapshot)
    if source is EntitlementSource.NONE:
        return source

    listing.entitlement_source = source.value
    await db.flush()
    try:
        await entitlement_service.consume_entitlement(db, owner, source, listing.listing_type)
    except EntitlementExhausted:
        logger.info("Entitlement %s raced away for user %s", source.value, owner.id)
        listing.entitlement_source = None
        await db.flush()
        return EntitlementSource.NONE
    return source


async def publish_listing(db: AsyncSession, owner: User, fields: dict) -> PublicationResult:
    """Create a listing, active if an entitlement covers it.

    Without one the listing is kept inactive and the caller is told to pay;
    it stays visible to its owner as pending.
    """
    limits = await entitlement_service.get_listing_limits(db)
    listing = Listing(owner_id=owner.id, is_active=False, **fields)
    db.add(listing)
    await db.flush()

    if not limits.enabled:
        listing.is_active = True
        listing.published_at = utcnow()
        await db.flush()
        await db.refresh(listing)
        return PublicationResult(listing=listing, needs_payment=False)

    source = await _spend(db, owner, listing)
    if source is EntitlementSource.NONE:
        await db.refresh(listing)
        logger.info("Listing %s created pending payment for user %s", listing.id, owner.id)
        return PublicationResult(
            listing=listing,
            needs_payment=True,
            amount_due=limits.price_per_extra_listing,
            currency=limits.currency,
        )

    listing.is_active = True
    listing.published_at = utcnow()
    await db.flush()
    await db.refresh(listing)
    logger.info("Listing %s published for user %s using %s", listing.id, owner.id, source.value)
    return PublicationResult(listing=listing, needs_payment=False)


async def apply_entitlement(db: AsyncSession, owner: User, listing: Listing) -> EntitlementSource:
    """Activate a pending listing with a free slot or credit instead of paying.

    Raises:
        Conflict: the listing is already active.
        EntitlementExhausted: nothing is left to spend.
    """
    if listing.is_active:
        raise Conflict("Listing is already active")

    source = await _spend(db, owner, listing)
    if source is EntitlementSource.NONE:
        raise EntitlementExhausted()
    if not await payment_service.activate_listing(db, listing.id, owner.id, source.value):
        raise Conflict("Listing is already active")
    await payment_service.void_other_pending(db, owner.id, listing.id)
    await db.refresh(listing)
    logger.info("Listing %s activated for user %s using %s", listing.id, owner.id, source.value)
    return source

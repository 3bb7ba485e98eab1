"""Short-stay reservations on top of the availability calculator."""

import logging
import uuid
from datetime import date

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.database import insert_ignoring_conflicts
from marketplace.errors import Conflict, Forbidden, NotFound, RangeOverlapsUnavailable, ValidationError
from marketplace.models.blocked_date import BlockedDate
from marketplace.models.booking import Booking
from marketplace.models.listing import Listing
from marketplace.models.user import User
from marketplace.notifications.service import notify
from marketplace.policy.availability import DisabledDates, compute_disabled_dates, validate_range
from marketplace.policy.pricing import DiscountTiers, Quote, apply_discount, nightly_rate

logger = logging.getLogger(__name__)

APPROVED = "approved"


async def get_bookable_listing(db: AsyncSession, listing_id: uuid.UUID) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None or not listing.is_active:
        raise NotFound("Listing not found")
    if listing.listing_type != "short_term":
        raise ValidationError("Only short-term listings can be reserved")
    return listing


async def load_disabled_dates(
    db: AsyncSession,
    listing_id: uuid.UUID,
    today: date | None = None,
    exclude_booking_id: uuid.UUID | None = None,
) -> DisabledDates:
    """Rebuild the unavailable days of a listing from approved stays and blocks."""
    stmt = select(Booking).where(Booking.property_id == listing_id, Booking.status == APPROVED)
    if exclude_booking_id is not None:
        stmt = stmt.where(Booking.id != exclude_booking_id)
    bookings = (await db.execute(stmt)).scalars().all()
    blocked = (
        await db.execute(select(BlockedDate.blocked_date).where(BlockedDate.property_id == listing_id))
    ).scalars().all()
    return compute_disabled_dates(bookings, blocked, today or date.today())


async def quote_stay(
    db: AsyncSession,
    listing: Listing,
    check_in: date,
    check_out: date,
    today: date | None = None,
) -> Quote:
    """Validate the requested range and price it.

    Raises:
        InvalidRange, RangeTooShort, RangeOverlapsUnavailable
    """
    disabled = await load_disabled_dates(db, listing.id, today)
    nights = validate_range(check_in, check_out, listing.minimum_stay, disabled)
    currency = settings.listing_currency
    return apply_discount(nightly_rate(listing, currency), nights, DiscountTiers.from_listing(listing), currency)


async def create_reservation(
    db: AsyncSession,
    listing: Listing,
    requester: User,
    check_in: date,
    check_out: date,
    message: str | None = None,
) -> Booking:
    """Create a pending request with the price as quoted right now."""
    if listing.owner_id == requester.id:
        raise Forbidden("You cannot reserve your own listing")

    quote = await quote_stay(db, listing, check_in, check_out)
    booking = Booking(
        property_id=listing.id,
        requester_id=requester.id,
        owner_id=listing.owner_id,
        check_in_date=check_in,
        check_out_date=check_out,
        status="pending",
        total_nights=quote.nights,
        price_per_night=quote.effective_price,
        total_price=quote.total_price,
        message=message,
    )
    db.add(booking)
    await db.flush()
    await db.refresh(booking)
    logger.info("Reservation %s requested on listing %s (%d nights)", booking.id, listing.id, quote.nights)

    await notify(db, listing.owner_id, "reservation_request", actor_id=requester.id, entity_id=booking.id)
    return booking


async def get_booking(db: AsyncSession, booking_id: uuid.UUID, user: User) -> Booking:
    """A booking visible to ``user`` as requester or owner."""
    booking = await db.get(Booking, booking_id)
    if booking is None or user.id not in (booking.requester_id, booking.owner_id):
        raise NotFound("Reservation not found")
    return booking


async def set_status(db: AsyncSession, booking: Booking, owner: User, new_status: str) -> Booking:
    """Owner decision on a pending request.

    Approval re-checks the range against the other approved stays and the
    blocked days, since either may have changed since the request.
    """
    if booking.owner_id != owner.id:
        raise Forbidden("Only the owner can decide on this reservation")
    if booking.status != "pending":
        raise Conflict(f"Reservation is already {booking.status}")

    if new_status == APPROVED:
        disabled = await load_disabled_dates(db, booking.property_id, exclude_booking_id=booking.id)
        try:
            validate_range(booking.check_in_date, booking.check_out_date, 1, disabled)
        except RangeOverlapsUnavailable as exc:
            raise Conflict("Dates are no longer available", **exc.extra) from exc

    booking.status = new_status
    await db.flush()
    await db.refresh(booking)
    logger.info("Reservation %s %s", booking.id, new_status)

    await notify(db, booking.requester_id, f"reservation_{new_status}", actor_id=owner.id, entity_id=booking.id)
    return booking


async def cancel(db: AsyncSession, booking: Booking, requester: User) -> Booking:
    if booking.requester_id != requester.id:
        raise Forbidden("Only the requester can cancel this reservation")
    if booking.status not in ("pending", APPROVED):
        raise Conflict(f"Reservation is already {booking.status}")

    booking.status = "cancelled"
    await db.flush()
    await db.refresh(booking)
    logger.info("Reservation %s cancelled", booking.id)

    await notify(db, booking.owner_id, "reservation_cancelled", actor_id=requester.id, entity_id=booking.id)
    return booking


async def list_for_user(db: AsyncSession, user: User, status: str | None = None) -> list[Booking]:
    stmt = select(Booking).where((Booking.requester_id == user.id) | (Booking.owner_id == user.id))
    if status:
        stmt = stmt.where(Booking.status == status)
    return list((await db.execute(stmt.order_by(Booking.check_in_date.desc()))).scalars().all())


async def add_blocked_dates(db: AsyncSession, listing: Listing, days: list[date]) -> int:
    added = 0
    for day in sorted(set(days)):
        result = await db.execute(
            insert_ignoring_conflicts(
                db,
                BlockedDate,
                {"id": uuid.uuid4(), "property_id": listing.id, "blocked_date": day},
            )
        )
        added += result.rowcount
    return added


async def remove_blocked_dates(db: AsyncSession, listing: Listing, days: list[date]) -> int:
    result = await db.execute(
        delete(BlockedDate)
        .where(BlockedDate.property_id == listing.id, BlockedDate.blocked_date.in_(days))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount

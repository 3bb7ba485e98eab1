"""Listings API router.

Publishing goes through the entitlement policy: a listing is created
active when a free slot, subscription allowance or credit covers it, and
inactive (pending payment) otherwise.
"""

from __future__ import annotations

import uuid
from datetime import date, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_current_admin_user, get_current_user, get_db, get_optional_user
from marketplace.errors import MarketplaceError, raise_http
from marketplace.models.listing import Listing
from marketplace.models.user import User
from marketplace.policy.pricing import DiscountTiers
from marketplace.schemas.listing import (
    ListingCreate,
    ListingCreateResponse,
    ListingListResponse,
    ListingResponse,
    ListingUpdate,
)
from marketplace.schemas.reservation import AvailabilityResponse, BlockedDatesRequest
from marketplace.services import booking_service, listing_service, payment_service

router = APIRouter(prefix="/api/v1/listings", tags=["listings"])

# Longest window the availability endpoint returns in one call
MAX_AVAILABILITY_DAYS = 366


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _get_owned_listing(listing_id: uuid.UUID, user: User, db: AsyncSession) -> Listing:
    listing = await db.get(Listing, listing_id)
    if listing is None or listing.owner_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found")
    return listing


async def _owner_view(db: AsyncSession, listing: Listing) -> ListingResponse:
    response = ListingResponse.model_validate(listing)
    response.pending_state = await payment_service.pending_state(db, listing)
    return response


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=ListingCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_listing(
    body: ListingCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ListingCreateResponse:
    """Create a listing, spending an entitlement when one is available."""
    result = await listing_service.publish_listing(db, current_user, body.model_dump())
    return ListingCreateResponse(
        listing=await _owner_view(db, result.listing),
        needs_payment=result.needs_payment,
        amount_due=result.amount_due,
        currency=result.currency,
    )


@router.get("", response_model=ListingListResponse)
async def list_listings(
    listing_type: str | None = Query(None, pattern="^(long_term|short_term)$"),
    city: str | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Public, paginated list of active listings."""
    filters = [Listing.is_active.is_(True)]
    if listing_type is not None:
        filters.append(Listing.listing_type == listing_type)
    if city is not None:
        filters.append(func.lower(Listing.city) == city.lower())

    total = (await db.execute(select(func.count()).select_from(Listing).where(*filters))).scalar_one()
    result = await db.execute(
        select(Listing).where(*filters).order_by(Listing.published_at.desc()).offset(skip).limit(limit)
    )
    return {"items": list(result.scalars().all()), "total": total}


@router.get("/mine", response_model=ListingListResponse)
async def my_listings(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    """All of the caller's listings, including the ones awaiting payment."""
    result = await db.execute(
        select(Listing).where(Listing.owner_id == current_user.id).order_by(Listing.created_at.desc())
    )
    items = [await _owner_view(db, listing) for listing in result.scalars().all()]
    return {"items": items, "total": len(items)}


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User | None = Depends(get_optional_user),
) -> ListingResponse:
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found")
    if current_user is not None and listing.owner_id == current_user.id:
        return await _owner_view(db, listing)
    if not listing.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found")
    return ListingResponse.model_validate(listing)


@router.put("/{listing_id}", response_model=ListingResponse)
async def update_listing(
    listing_id: uuid.UUID,
    body: ListingUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ListingResponse:
    """Edit a listing's content. Activation only changes through publication or payment."""
    listing = await _get_owned_listing(listing_id, current_user, db)
    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(listing, field, value)
    try:
        DiscountTiers.from_listing(listing)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    await db.flush()
    await db.refresh(listing)
    return await _owner_view(db, listing)


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing(
    listing_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> Response:
    """Hard delete, reserved for administrators."""
    listing = await db.get(Listing, listing_id)
    if listing is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Listing not found")
    await db.delete(listing)
    await db.flush()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{listing_id}/use-credit", response_model=ListingResponse)
async def use_credit(
    listing_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ListingResponse:
    """Activate a pending listing with a free slot or credit instead of paying."""
    listing = await _get_owned_listing(listing_id, current_user, db)
    try:
        await listing_service.apply_entitlement(db, current_user, listing)
    except MarketplaceError as exc:
        raise_http(exc)
    return await _owner_view(db, listing)


# ---------------------------------------------------------------------------
# Availability and blocked dates
# ---------------------------------------------------------------------------


@router.get("/{listing_id}/availability", response_model=AvailabilityResponse)
async def get_availability(
    listing_id: uuid.UUID,
    start: date | None = Query(None, description="First day of the window (default today)"),
    days: int = Query(90, ge=1, le=MAX_AVAILABILITY_DAYS),
    db: AsyncSession = Depends(get_db),
) -> AvailabilityResponse:
    try:
        listing = await booking_service.get_bookable_listing(db, listing_id)
    except MarketplaceError as exc:
        raise_http(exc)

    today = date.today()
    start = start or today
    end = start + timedelta(days=days)
    disabled = await booking_service.load_disabled_dates(db, listing.id, today)
    return AvailabilityResponse(
        property_id=listing.id,
        start=start,
        end=end,
        disabled_before=disabled.cutoff,
        disabled_dates=disabled.within(max(start, disabled.cutoff), end),
        minimum_stay=listing.minimum_stay,
        discounts=DiscountTiers.from_listing(listing).as_dict(),
    )


@router.post("/{listing_id}/blocked-dates", status_code=status.HTTP_201_CREATED)
async def block_dates(
    listing_id: uuid.UUID,
    body: BlockedDatesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int]:
    listing = await _get_owned_listing(listing_id, current_user, db)
    return {"added": await booking_service.add_blocked_dates(db, listing, body.dates)}


@router.delete("/{listing_id}/blocked-dates")
async def unblock_dates(
    listing_id: uuid.UUID,
    body: BlockedDatesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict[str, int]:
    listing = await _get_owned_listing(listing_id, current_user, db)
    return {"removed": await booking_service.remove_blocked_dates(db, listing, body.dates)}

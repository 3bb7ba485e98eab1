"""Reservations API router: quotes, requests and owner decisions."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_current_user, get_db
from marketplace.config import settings
from marketplace.errors import MarketplaceError, raise_http
from marketplace.models.booking import Booking
from marketplace.models.user import User
from marketplace.schemas.reservation import (
    QuoteRequest,
    QuoteResponse,
    ReservationCreate,
    ReservationListResponse,
    ReservationResponse,
    ReservationStatusUpdate,
)
from marketplace.services import booking_service

router = APIRouter(prefix="/api/v1/reservations", tags=["reservations"])


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    body: QuoteRequest,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(get_current_user),
) -> QuoteResponse:
    """Validate a stay and price it with the listing's length-of-stay discount."""
    try:
        listing = await booking_service.get_bookable_listing(db, body.property_id)
        result = await booking_service.quote_stay(db, listing, body.check_in_date, body.check_out_date)
    except MarketplaceError as exc:
        raise_http(exc)
    return QuoteResponse(
        nights=result.nights,
        base_price=result.base_price,
        effective_price=result.effective_price,
        total_price=result.total_price,
        savings=result.savings,
        tier_label=result.tier_label,
        discount_percent=result.discount_percent,
        currency=settings.listing_currency,
    )


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    body: ReservationCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Booking:
    try:
        listing = await booking_service.get_bookable_listing(db, body.property_id)
        return await booking_service.create_reservation(
            db, listing, current_user, body.check_in_date, body.check_out_date, body.message
        )
    except MarketplaceError as exc:
        raise_http(exc)


@router.get("", response_model=ReservationListResponse)
async def list_reservations(
    status_filter: str | None = Query(None, alias="status", pattern="^(pending|approved|rejected|cancelled)$"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    """Reservations the caller requested or received."""
    items = await booking_service.list_for_user(db, current_user, status_filter)
    return {"items": items, "total": len(items)}


@router.patch("/{reservation_id}/status", response_model=ReservationResponse)
async def update_status(
    reservation_id: uuid.UUID,
    body: ReservationStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Booking:
    try:
        booking = await booking_service.get_booking(db, reservation_id, current_user)
        return await booking_service.set_status(db, booking, current_user, body.status)
    except MarketplaceError as exc:
        raise_http(exc)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Booking:
    try:
        booking = await booking_service.get_booking(db, reservation_id, current_user)
        return await booking_service.cancel(db, booking, current_user)
    except MarketplaceError as exc:
        raise_http(exc)

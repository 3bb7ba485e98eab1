"""Pydantic v2 request/response schemas for reservations and availability."""

import uuid
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class QuoteRequest(BaseModel):
    property_id: uuid.UUID
    check_in_date: date
    check_out_date: date


class ReservationCreate(QuoteRequest):
    message: str | None = Field(None, max_length=2000)


class ReservationStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(approved|rejected)$")


class BlockedDatesRequest(BaseModel):
    dates: list[date] = Field(..., min_length=1, max_length=366)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class QuoteResponse(BaseModel):
    nights: int
    base_price: Decimal
    effective_price: Decimal
    total_price: Decimal
    savings: Decimal
    tier_label: str | None = None
    discount_percent: Decimal | None = None
    currency: str


class AvailabilityResponse(BaseModel):
    property_id: uuid.UUID
    start: date
    end: date
    # Days strictly before this are always unavailable
    disabled_before: date
    disabled_dates: list[date]
    minimum_stay: int
    discounts: dict[int, Decimal]


class ReservationResponse(BaseModel):
    id: uuid.UUID
    property_id: uuid.UUID
    requester_id: uuid.UUID
    owner_id: uuid.UUID
    check_in_date: date
    check_out_date: date
    status: str
    total_nights: int
    price_per_night: Decimal
    total_price: Decimal
    message: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ReservationListResponse(BaseModel):
    items: list[ReservationResponse]
    total: int

"""Pydantic v2 request/response schemas for listing endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

_PERCENT = {"gt": 0, "lt": 100}

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ListingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    city: str | None = Field(None, max_length=255)
    country: str | None = Field(None, max_length=100)
    listing_type: str = Field(..., pattern="^(long_term|short_term)$")
    price: Decimal | None = Field(None, ge=0)
    price_per_night: Decimal | None = Field(None, ge=0)
    minimum_stay: int = Field(1, ge=1)
    discount_3_nights: Decimal | None = Field(None, **_PERCENT)
    discount_5_nights: Decimal | None = Field(None, **_PERCENT)
    discount_7_nights: Decimal | None = Field(None, **_PERCENT)
    discount_14_nights: Decimal | None = Field(None, **_PERCENT)
    discount_30_nights: Decimal | None = Field(None, **_PERCENT)


class ListingUpdate(BaseModel):
    """Partial update. Activation is never changed through this schema."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    city: str | None = Field(None, max_length=255)
    country: str | None = Field(None, max_length=100)
    price: Decimal | None = Field(None, ge=0)
    price_per_night: Decimal | None = Field(None, ge=0)
    minimum_stay: int | None = Field(None, ge=1)
    discount_3_nights: Decimal | None = Field(None, **_PERCENT)
    discount_5_nights: Decimal | None = Field(None, **_PERCENT)
    discount_7_nights: Decimal | None = Field(None, **_PERCENT)
    discount_14_nights: Decimal | None = Field(None, **_PERCENT)
    discount_30_nights: Decimal | None = Field(None, **_PERCENT)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ListingResponse(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    title: str
    description: str | None = None
    city: str | None = None
    country: str | None = None
    listing_type: str
    price: Decimal | None = None
    price_per_night: Decimal | None = None
    minimum_stay: int
    discount_3_nights: Decimal | None = None
    discount_5_nights: Decimal | None = None
    discount_7_nights: Decimal | None = None
    discount_14_nights: Decimal | None = None
    discount_30_nights: Decimal | None = None
    is_active: bool
    entitlement_source: str | None = None
    published_at: datetime | None = None
    # Owner-only: why an inactive listing is not visible yet
    pending_state: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ListingCreateResponse(BaseModel):
    listing: ListingResponse
    needs_payment: bool
    amount_due: Decimal | None = None
    currency: str | None = None


class ListingListResponse(BaseModel):
    items: list[ListingResponse]
    total: int

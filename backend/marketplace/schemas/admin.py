"""Pydantic v2 schemas for administrator settings and payment review."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ListingLimitSettings(BaseModel):
    """Free quota per account type and the price of one extra listing."""

    enabled: bool
    free_listings_default: int = Field(..., ge=0)
    free_listings_agence: int = Field(..., ge=0)
    free_listings_particulier: int = Field(..., ge=0)
    free_listings_proprietaire: int = Field(..., ge=0)
    free_listings_demarcheur: int = Field(..., ge=0)
    price_per_extra_listing: int = Field(..., ge=0)
    currency: str = Field(..., min_length=3, max_length=3)


class SubscriptionLimitSettings(BaseModel):
    pro: int = Field(..., ge=0)
    premium: int = Field(..., ge=0)


class PaymentRejectRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class AdminPaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    amount: Decimal
    currency: str
    status: str
    payment_method: str
    transaction_ref: str
    listing_type: str | None = None
    property_id: uuid.UUID | None = None
    product_id: str | None = None
    sender_phone: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class PaymentDecisionResponse(BaseModel):
    payment: AdminPaymentResponse
    activated_listing_id: uuid.UUID | None = None
    credit_granted: bool = False

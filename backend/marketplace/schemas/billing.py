"""Pydantic v2 request/response schemas for billing endpoints."""

import uuid
from decimal import Decimal

from pydantic import BaseModel, Field

# --- Request schemas ---


class CheckoutRequest(BaseModel):
    """Start a hosted checkout for one listing publication."""

    amount: Decimal = Field(..., gt=0)
    currency: str = Field("XOF", min_length=3, max_length=3)
    listing_type: str = Field(..., pattern="^(long_term|short_term)$")
    property_id: uuid.UUID | None = None
    success_url: str | None = None
    cancel_url: str | None = None


class ConfirmRequest(BaseModel):
    transaction_ref: str = Field(..., min_length=1)


class CreditsCheckoutRequest(BaseModel):
    product_id: str
    success_url: str | None = None
    cancel_url: str | None = None


class MobileMoneyRequest(BaseModel):
    """Declare a mobile money transfer, for a listing or a catalogue product."""

    amount: Decimal = Field(..., gt=0)
    currency: str = Field("XOF", min_length=3, max_length=3)
    sender_phone: str = Field(..., min_length=8, max_length=30, pattern=r"^\+?[0-9 ]+$")
    listing_type: str | None = Field(None, pattern="^(long_term|short_term)$")
    property_id: uuid.UUID | None = None
    product_id: str | None = None


class AppleReceiptRequest(BaseModel):
    receipt_data: str = Field(..., min_length=1)
    product_id: str
    listing_type: str | None = Field(None, pattern="^(long_term|short_term)$")
    property_id: uuid.UUID | None = None


class AppleCreditsRequest(BaseModel):
    receipt_data: str = Field(..., min_length=1)
    product_id: str


# --- Response schemas ---


class CheckoutResponse(BaseModel):
    checkout_url: str
    transaction_ref: str
    session_id: str


class CreditsCheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str


class ConfirmResponse(BaseModel):
    ok: bool
    property_id: uuid.UUID | None = None


class MobileMoneyResponse(BaseModel):
    payment_id: uuid.UUID
    transaction_ref: str
    status: str


class AppleReceiptResponse(BaseModel):
    success: bool
    payment_id: uuid.UUID | None = None
    transaction_id: str
    already_processed: bool = False


class AppleCreditsResponse(BaseModel):
    success: bool
    transaction_id: str
    credits_added: int
    already_processed: bool = False


class EntitlementsResponse(BaseModel):
    """What the caller may still publish, and what one extra listing costs."""

    remaining_free_listings: int
    available_credits: int
    has_active_subscription: bool
    subscription_type: str | None = None
    subscription_credits_remaining: int
    needs_payment: bool
    limit_enabled: bool
    price_per_extra_listing: int
    currency: str


class ProductResponse(BaseModel):
    product_id: str
    name: str
    credits: int
    amount: int
    currency: str
    is_subscription: bool

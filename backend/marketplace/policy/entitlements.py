"""Entitlement resolution for publishing a listing.

An account can publish for free while its quota lasts, then by spending a
subscription credit, then a purchased credit. Past that it has to pay.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Any


class EntitlementSource(str, enum.Enum):
    FREE = "free"
    SUBSCRIPTION_CREDIT = "subscription_credit"
    PURCHASED_CREDIT = "purchased_credit"
    NONE = "none"


@dataclass(frozen=True)
class EntitlementSnapshot:
    """Point-in-time view of what an account may still publish."""

    remaining_free_listings: int = 0
    available_credits: int = 0
    has_active_subscription: bool = False
    subscription_type: str | None = None
    subscription_credits_remaining: int = 0

    @property
    def total_available(self) -> int:
        sub = self.subscription_credits_remaining if self.has_active_subscription else 0
        return self.remaining_free_listings + sub + self.available_credits

    def consume(self, source: EntitlementSource) -> "EntitlementSnapshot":
        """Return the snapshot after spending one unit of ``source``."""
        if source is EntitlementSource.FREE and self.remaining_free_listings > 0:
            return replace(self, remaining_free_listings=self.remaining_free_listings - 1)
        if source is EntitlementSource.SUBSCRIPTION_CREDIT and self._subscription_usable():
            return replace(self, subscription_credits_remaining=self.subscription_credits_remaining - 1)
        if source is EntitlementSource.PURCHASED_CREDIT and self.available_credits > 0:
            return replace(self, available_credits=self.available_credits - 1)
        raise ValueError(f"Cannot consume {source.value}: nothing left")

    def _subscription_usable(self) -> bool:
        return self.has_active_subscription and self.subscription_credits_remaining > 0


def remaining_free_listings(limit: int, published_count: int) -> int:
    return max(0, limit - published_count)


def resolve_entitlement_source(snapshot: EntitlementSnapshot) -> EntitlementSource:
    """Pick the source the next publication is charged to."""
    if snapshot.remaining_free_listings > 0:
        return EntitlementSource.FREE
    if snapshot._subscription_usable():
        return EntitlementSource.SUBSCRIPTION_CREDIT
    if snapshot.available_credits > 0:
        return EntitlementSource.PURCHASED_CREDIT
    return EntitlementSource.NONE


def needs_payment(snapshot: EntitlementSnapshot, enabled: bool = True) -> bool:
    """Whether publishing one more listing requires a payment."""
    if not enabled:
        return False
    return resolve_entitlement_source(snapshot) is EntitlementSource.NONE


def free_listing_limit(settings: Any, user_type: str | None) -> int:
    """Free listing quota for an account type, with the configured default."""
    if user_type:
        value = getattr(settings, f"free_listings_{user_type}", None)
        if value is not None:
            return int(value)
    return int(settings.free_listings_default)

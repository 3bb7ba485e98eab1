"""Pure pricing, quota and availability rules."""

from marketplace.policy.availability import (
    DisabledDates,
    compute_disabled_dates,
    is_date_disabled,
    validate_range,
)
from marketplace.policy.entitlements import (
    EntitlementSnapshot,
    EntitlementSource,
    free_listing_limit,
    needs_payment,
    remaining_free_listings,
    resolve_entitlement_source,
)
from marketplace.policy.pricing import (
    DiscountTiers,
    Quote,
    apply_discount,
    nightly_rate,
    round_to_currency,
    to_minor_units,
)

__all__ = [
    "DisabledDates",
    "DiscountTiers",
    "EntitlementSnapshot",
    "EntitlementSource",
    "Quote",
    "apply_discount",
    "compute_disabled_dates",
    "free_listing_limit",
    "is_date_disabled",
    "needs_payment",
    "nightly_rate",
    "remaining_free_listings",
    "resolve_entitlement_source",
    "round_to_currency",
    "to_minor_units",
    "validate_range",
]

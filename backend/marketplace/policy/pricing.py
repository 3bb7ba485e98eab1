"""Nightly pricing with tiered length-of-stay discounts and currency rounding."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

# Thresholds in nights, checked from the largest down.
DISCOUNT_THRESHOLDS: tuple[int, ...] = (30, 14, 7, 5, 3)

# Currencies whose smallest unit is the major unit (no cents).
ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
        "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
    }
)

_ONE = Decimal("1")
_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def is_zero_decimal(currency: str) -> bool:
    return currency.upper() in ZERO_DECIMAL_CURRENCIES


def round_to_currency(amount: Any, currency: str) -> Decimal:
    """Round half-up to the currency's smallest unit."""
    exponent = _ONE if is_zero_decimal(currency) else _CENT
    return _to_decimal(amount).quantize(exponent, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Any, currency: str) -> int:
    """Convert a major-unit amount to the processor's integer minor units.

    Zero-decimal currencies are passed through (rounded), every other
    currency is multiplied by 100.
    """
    value = _to_decimal(amount)
    if not is_zero_decimal(currency):
        value = value * _HUNDRED
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    if is_zero_decimal(currency):
        return Decimal(amount)
    return (Decimal(amount) / _HUNDRED).quantize(_CENT)


class DiscountTiers:
    """Length-of-stay discounts keyed by threshold nights.

    Every threshold may carry a discount at the same time; the highest
    threshold not exceeding the stay length applies.
    """

    def __init__(self, tiers: Mapping[int, Any] | None = None) -> None:
        self._tiers: dict[int, Decimal] = {}
        for threshold, percent in (tiers or {}).items():
            if percent is None:
                continue
            threshold = int(threshold)
            if threshold not in DISCOUNT_THRESHOLDS:
                raise ValueError(f"Unsupported discount threshold: {threshold} nights")
            pct = _to_decimal(percent)
            if pct == 0:
                continue
            if not (0 < pct < 100):
                raise ValueError(f"Discount for {threshold} nights must be between 0 and 100")
            self._tiers[threshold] = pct

    @classmethod
    def from_listing(cls, listing: Any) -> "DiscountTiers":
        """Build tiers from the ``discount_<n>_nights`` columns of a listing."""
        return cls({n: getattr(listing, f"discount_{n}_nights", None) for n in DISCOUNT_THRESHOLDS})

    def select(self, nights: int) -> tuple[int, Decimal] | None:
        for threshold in DISCOUNT_THRESHOLDS:
            if nights >= threshold and threshold in self._tiers:
                return threshold, self._tiers[threshold]
        return None

    def as_dict(self) -> dict[int, Decimal]:
        return dict(sorted(self._tiers.items()))

    def __bool__(self) -> bool:
        return bool(self._tiers)

    def __repr__(self) -> str:
        return f"DiscountTiers({self.as_dict()!r})"


@dataclass(frozen=True)
class Quote:
    """Price of a stay after the applicable discount."""

    nights: int
    base_price: Decimal
    effective_price: Decimal
    total_price: Decimal
    savings: Decimal
    tier_label: str | None = None
    discount_percent: Decimal | None = None


def tier_label(threshold: int) -> str:
    return f"{threshold}+ nights"


def apply_discount(
    price_per_night: Any,
    nights: int,
    tiers: DiscountTiers,
    currency: str = "XOF",
) -> Quote:
    """Price ``nights`` nights at ``price_per_night`` with the best tier.

    Callers validate ``nights`` against the listing's minimum stay first; a
    zero-night stay is rejected by the availability calculator, never priced.
    """
    base = round_to_currency(price_per_night, currency)
    selected = tiers.select(nights)
    if selected is None:
        effective, label, percent = base, None, None
    else:
        threshold, percent = selected
        effective = round_to_currency(base * (_ONE - percent / _HUNDRED), currency)
        label = tier_label(threshold)

    total = effective * nights
    return Quote(
        nights=nights,
        base_price=base,
        effective_price=effective,
        total_price=total,
        savings=base * nights - total,
        tier_label=label,
        discount_percent=percent,
    )


def nightly_rate(listing: Any, currency: str = "XOF") -> Decimal:
    """Nightly price of a listing, derived from the monthly price when unset."""
    if listing.price_per_night:
        return round_to_currency(listing.price_per_night, currency)
    return round_to_currency(_to_decimal(listing.price or 0) / 30, currency)

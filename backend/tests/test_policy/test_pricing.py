"""Unit tests for nightly pricing, discount tiers and currency rounding."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from marketplace.policy.pricing import (
    DiscountTiers,
    apply_discount,
    from_minor_units,
    nightly_rate,
    round_to_currency,
    to_minor_units,
)


def _listing(**discounts) -> SimpleNamespace:
    fields = {f"discount_{n}_nights": None for n in (3, 5, 7, 14, 30)}
    fields.update(discounts)
    return SimpleNamespace(price=None, price_per_night=Decimal("20000"), **fields)


class TestDiscountTiers:
    def test_highest_threshold_not_exceeding_stay_wins(self):
        tiers = DiscountTiers({3: 5, 7: 10, 30: 25})
        assert tiers.select(2) is None
        assert tiers.select(3) == (3, Decimal("5"))
        assert tiers.select(6) == (3, Decimal("5"))
        assert tiers.select(7) == (7, Decimal("10"))
        assert tiers.select(29) == (7, Decimal("10"))
        assert tiers.select(45) == (30, Decimal("25"))

    def test_unset_and_zero_tiers_are_ignored(self):
        tiers = DiscountTiers({3: None, 5: 0})
        assert not tiers
        assert tiers.select(10) is None

    def test_unknown_threshold_rejected(self):
        with pytest.raises(ValueError, match="10 nights"):
            DiscountTiers({10: 5})

    @pytest.mark.parametrize("percent", [100, -5, 150])
    def test_out_of_range_percent_rejected(self, percent):
        with pytest.raises(ValueError):
            DiscountTiers({7: percent})

    def test_from_listing_reads_every_column(self):
        tiers = DiscountTiers.from_listing(_listing(discount_5_nights=Decimal("8"), discount_14_nights=Decimal("12")))
        assert tiers.as_dict() == {5: Decimal("8"), 14: Decimal("12")}


class TestApplyDiscount:
    def test_no_discount_below_smallest_tier(self):
        quote = apply_discount(Decimal("20000"), 2, DiscountTiers({3: 5}))
        assert quote.effective_price == Decimal("20000")
        assert quote.total_price == Decimal("40000")
        assert quote.savings == 0
        assert quote.tier_label is None
        assert quote.discount_percent is None

    def test_weekly_discount(self):
        quote = apply_discount(Decimal("20000"), 7, DiscountTiers({7: 10, 30: 25}))
        assert quote.nights == 7
        assert quote.base_price == Decimal("20000")
        assert quote.effective_price == Decimal("18000")
        assert quote.total_price == Decimal("126000")
        assert quote.savings == Decimal("14000")
        assert quote.tier_label == "7+ nights"
        assert quote.discount_percent == Decimal("10")

    def test_monthly_tier_beats_weekly(self):
        quote = apply_discount(Decimal("20000"), 30, DiscountTiers({7: 10, 30: 25}))
        assert quote.effective_price == Decimal("15000")
        assert quote.total_price == Decimal("450000")
        assert quote.tier_label == "30+ nights"

    def test_zero_decimal_currency_rounds_to_unit(self):
        quote = apply_discount(Decimal("10001"), 3, DiscountTiers({3: 15}), "XOF")
        # 10001 * 0.85 = 8500.85
        assert quote.effective_price == Decimal("8501")
        assert quote.total_price == Decimal("25503")

    def test_two_decimal_currency_rounds_to_cents(self):
        quote = apply_discount(Decimal("99.99"), 7, DiscountTiers({7: 10}), "EUR")
        assert quote.effective_price == Decimal("89.99")
        assert quote.total_price == Decimal("629.93")

    def test_total_is_effective_price_times_nights(self):
        quote = apply_discount(Decimal("12345"), 14, DiscountTiers({3: 3, 14: 7}))
        assert quote.total_price == quote.effective_price * 14
        assert quote.savings == quote.base_price * 14 - quote.total_price


class TestCurrencyUnits:
    def test_round_half_up(self):
        assert round_to_currency(Decimal("2.5"), "XOF") == Decimal("3")
        assert round_to_currency(Decimal("2.345"), "USD") == Decimal("2.35")

    def test_zero_decimal_passes_through(self):
        assert to_minor_units(Decimal("1000"), "XOF") == 1000
        assert to_minor_units(1000, "xof") == 1000

    def test_two_decimal_multiplies_by_hundred(self):
        assert to_minor_units(Decimal("12.34"), "EUR") == 1234
        assert to_minor_units(Decimal("12.345"), "USD") == 1235

    def test_from_minor_units(self):
        assert from_minor_units(1000, "XOF") == Decimal("1000")
        assert from_minor_units(1235, "USD") == Decimal("12.35")


class TestNightlyRate:
    def test_uses_price_per_night(self):
        assert nightly_rate(_listing()) == Decimal("20000")

    def test_falls_back_to_monthly_price(self):
        listing = _listing()
        listing.price_per_night = None
        listing.price = Decimal("300000")
        assert nightly_rate(listing) == Decimal("10000")

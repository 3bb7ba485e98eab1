"""Unit tests for entitlement resolution."""

from types import SimpleNamespace

import pytest

from marketplace.policy.entitlements import (
    EntitlementSnapshot,
    EntitlementSource,
    free_listing_limit,
    needs_payment,
    remaining_free_listings,
    resolve_entitlement_source,
)


class TestResolveEntitlementSource:
    def test_free_quota_first(self):
        snapshot = EntitlementSnapshot(
            remaining_free_listings=1,
            available_credits=2,
            has_active_subscription=True,
            subscription_type="pro",
            subscription_credits_remaining=3,
        )
        assert resolve_entitlement_source(snapshot) is EntitlementSource.FREE
        assert snapshot.total_available == 6

    def test_subscription_before_purchased_credits(self):
        snapshot = EntitlementSnapshot(
            available_credits=2, has_active_subscription=True, subscription_credits_remaining=1
        )
        assert resolve_entitlement_source(snapshot) is EntitlementSource.SUBSCRIPTION_CREDIT

    def test_exhausted_subscription_falls_through(self):
        snapshot = EntitlementSnapshot(
            available_credits=1, has_active_subscription=True, subscription_credits_remaining=0
        )
        assert resolve_entitlement_source(snapshot) is EntitlementSource.PURCHASED_CREDIT

    def test_inactive_subscription_credits_do_not_count(self):
        snapshot = EntitlementSnapshot(has_active_subscription=False, subscription_credits_remaining=5)
        assert resolve_entitlement_source(snapshot) is EntitlementSource.NONE
        assert snapshot.total_available == 0

    def test_nothing_left(self):
        assert resolve_entitlement_source(EntitlementSnapshot()) is EntitlementSource.NONE


class TestNeedsPayment:
    def test_needs_payment_when_nothing_left(self):
        assert needs_payment(EntitlementSnapshot()) is True

    def test_no_payment_with_credit(self):
        assert needs_payment(EntitlementSnapshot(available_credits=1)) is False

    def test_limits_disabled(self):
        assert needs_payment(EntitlementSnapshot(), enabled=False) is False


class TestConsume:
    def test_consume_walks_down_each_source(self):
        snapshot = EntitlementSnapshot(
            remaining_free_listings=1,
            available_credits=1,
            has_active_subscription=True,
            subscription_credits_remaining=1,
        )
        for expected in (
            EntitlementSource.FREE,
            EntitlementSource.SUBSCRIPTION_CREDIT,
            EntitlementSource.PURCHASED_CREDIT,
        ):
            source = resolve_entitlement_source(snapshot)
            assert source is expected
            snapshot = snapshot.consume(source)
        assert snapshot.total_available == 0
        assert needs_payment(snapshot)

    def test_consume_empty_source_raises(self):
        with pytest.raises(ValueError):
            EntitlementSnapshot().consume(EntitlementSource.FREE)


class TestFreeListingLimit:
    limits = SimpleNamespace(free_listings_default=3, free_listings_agence=1, free_listings_particulier=3)

    def test_per_user_type(self):
        assert free_listing_limit(self.limits, "agence") == 1
        assert free_listing_limit(self.limits, "particulier") == 3

    def test_unknown_or_missing_type_uses_default(self):
        assert free_listing_limit(self.limits, "inconnu") == 3
        assert free_listing_limit(self.limits, None) == 3

    def test_remaining_never_negative(self):
        assert remaining_free_listings(3, 1) == 2
        assert remaining_free_listings(3, 5) == 0

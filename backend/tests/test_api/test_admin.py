"""Tests for administrator settings and payment review endpoints."""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import headers_for, make_listing, make_user
from marketplace.models.notification import Notification
from marketplace.models.payment import Payment
from marketplace.models.user import User
from marketplace.services import entitlement_service, payment_service

LIMITS = {
    "enabled": True,
    "free_listings_default": 2,
    "free_listings_agence": 0,
    "free_listings_particulier": 2,
    "free_listings_proprietaire": 2,
    "free_listings_demarcheur": 1,
    "price_per_extra_listing": 1500,
    "currency": "xof",
}


class TestListingLimit:
    @pytest.mark.asyncio
    async def test_defaults(self, client: AsyncClient, admin_headers: dict):
        response = await client.get("/api/v1/admin/settings/listing-limit", headers=admin_headers)
        assert response.status_code == 200
        data = response.json()
        assert data["enabled"] is True
        assert data["free_listings_agence"] == 1
        assert data["price_per_extra_listing"] == 1000

    @pytest.mark.asyncio
    async def test_update_applies_to_entitlements(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        response = await client.put("/api/v1/admin/settings/listing-limit", json=LIMITS, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["currency"] == "XOF"

        stored = await client.get("/api/v1/admin/settings/listing-limit", headers=admin_headers)
        assert stored.json()["price_per_extra_listing"] == 1500

        seller = await make_user(db_session, user_type="demarcheur")
        entitlements = await client.get("/api/v1/billing/entitlements", headers=headers_for(seller))
        assert entitlements.json()["remaining_free_listings"] == 1
        assert entitlements.json()["price_per_extra_listing"] == 1500

    @pytest.mark.asyncio
    async def test_negative_quota_rejected(self, client: AsyncClient, admin_headers: dict):
        response = await client.put(
            "/api/v1/admin/settings/listing-limit",
            json={**LIMITS, "free_listings_default": -1},
            headers=admin_headers,
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_requires_admin(self, client: AsyncClient, auth_headers: dict):
        response = await client.get("/api/v1/admin/settings/listing-limit", headers=auth_headers)
        assert response.status_code == 403
        assert response.json()["detail"]["kind"] == "forbidden"


class TestSubscriptionLimits:
    @pytest.mark.asyncio
    async def test_defaults_and_update(self, client: AsyncClient, admin_headers: dict):
        defaults = await client.get("/api/v1/admin/settings/subscription-limits", headers=admin_headers)
        assert defaults.json() == {"pro": 15, "premium": 30}

        updated = await client.put(
            "/api/v1/admin/settings/subscription-limits", json={"pro": 20, "premium": 50}, headers=admin_headers
        )
        assert updated.status_code == 200

        products = await client.get("/api/v1/billing/products")
        credits = {p["product_id"]: p["credits"] for p in products.json()}
        assert credits["sub.pro.monthly"] == 20
        assert credits["sub.premium.monthly"] == 50


async def _transfer(db_session: AsyncSession, user: User, *, listing=None, product_id: str | None = None) -> Payment:
    return await payment_service.create_pending_payment(
        db_session,
        user.id,
        amount=Decimal("2250") if product_id else Decimal("1000"),
        currency="XOF",
        payment_method="mobile_money",
        listing_type="long_term",
        property_id=listing.id if listing else None,
        sender_phone="0700000000",
        product_id=product_id,
    )


class TestPaymentReview:
    @pytest.mark.asyncio
    async def test_queue_lists_pending_transfers(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        pending = await _transfer(db_session, test_user)
        settled = await _transfer(db_session, test_user)
        await payment_service.fail_payment(db_session, settled.transaction_ref)

        response = await client.get("/api/v1/admin/payments?status=pending", headers=admin_headers)

        assert response.status_code == 200
        refs = [p["transaction_ref"] for p in response.json()]
        assert refs == [pending.transaction_ref]
        assert response.json()[0]["sender_phone"] == "0700000000"

    @pytest.mark.asyncio
    async def test_approve_activates_listing(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_user: User, admin_headers: dict
    ):
        listing = await make_listing(db_session, test_user, is_active=False)
        payment = await _transfer(db_session, test_user, listing=listing)

        response = await client.post(f"/api/v1/admin/payments/{payment.id}/approve", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["payment"]["status"] == "completed"
        assert data["activated_listing_id"] == str(listing.id)
        await db_session.refresh(listing)
        assert listing.is_active is True
        note = (await db_session.execute(select(Notification).where(Notification.user_id == test_user.id))).scalar_one()
        assert note.type == "payment_approved"
        assert note.actor_id == admin_user.id

        again = await client.post(f"/api/v1/admin/payments/{payment.id}/approve", headers=admin_headers)
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_approve_product_grants_credits(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        payment = await _transfer(db_session, test_user, product_id="listing.pack5")

        response = await client.post(f"/api/v1/admin/payments/{payment.id}/approve", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["credit_granted"] is True
        assert await entitlement_service.available_purchased_credits(db_session, test_user.id) == 5

    @pytest.mark.asyncio
    async def test_reject_notifies_with_reason(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        payment = await _transfer(db_session, test_user)

        with patch("marketplace.notifications.service.dispatch", new_callable=AsyncMock) as mock_dispatch:
            response = await client.post(
                f"/api/v1/admin/payments/{payment.id}/reject",
                json={"reason": "No transfer received from this number"},
                headers=admin_headers,
            )

        assert response.status_code == 200
        assert response.json()["payment"]["status"] == "failed"
        assert mock_dispatch.call_args.args[2:4] == ("Payment rejected", "No transfer received from this number")

        again = await client.post(f"/api/v1/admin/payments/{payment.id}/reject", headers=admin_headers)
        assert again.status_code == 409
        assert again.json()["detail"]["status"] == "failed"

    @pytest.mark.asyncio
    async def test_rejected_transfer_can_still_be_approved(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        payment = await _transfer(db_session, test_user)
        await client.post(f"/api/v1/admin/payments/{payment.id}/reject", headers=admin_headers)

        response = await client.post(f"/api/v1/admin/payments/{payment.id}/approve", headers=admin_headers)

        assert response.status_code == 200
        assert await entitlement_service.available_purchased_credits(db_session, test_user.id) == 1

    @pytest.mark.asyncio
    async def test_card_payments_are_not_reviewed(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, admin_headers: dict
    ):
        payment = await payment_service.create_pending_payment(
            db_session,
            test_user.id,
            amount=Decimal("1000"),
            currency="XOF",
            payment_method="stripe",
            listing_type="short_term",
            property_id=None,
        )
        response = await client.post(f"/api/v1/admin/payments/{payment.id}/approve", headers=admin_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_payment(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(f"/api/v1/admin/payments/{uuid.uuid4()}/approve", headers=admin_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_requires_admin(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        payment = await _transfer(db_session, test_user)
        response = await client.post(f"/api/v1/admin/payments/{payment.id}/approve", headers=auth_headers)
        assert response.status_code == 403

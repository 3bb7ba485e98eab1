"""Tests for listing CRUD, publication gating and availability endpoints."""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import days_from_today, headers_for, make_listing, make_user
from marketplace.models.user import User
from marketplace.services import entitlement_service

LISTING_DATA = {
    "title": "Appartement Plateau",
    "description": "Two bedrooms, sea view",
    "city": "Abidjan",
    "country": "CI",
    "listing_type": "short_term",
    "price_per_night": "25000",
    "minimum_stay": 2,
    "discount_7_nights": "10",
}


class TestCreateListing:
    @pytest.mark.asyncio
    async def test_create_within_free_quota(self, client: AsyncClient, auth_headers: dict):
        response = await client.post("/api/v1/listings", json=LISTING_DATA, headers=auth_headers)
        assert response.status_code == 201
        data = response.json()
        assert data["needs_payment"] is False
        assert data["listing"]["is_active"] is True
        assert data["listing"]["entitlement_source"] == "free"
        assert data["listing"]["pending_state"] == "active"
        assert Decimal(data["listing"]["price_per_night"]) == Decimal("25000")

    @pytest.mark.asyncio
    async def test_quota_exhausted_needs_payment(self, client: AsyncClient, db_session: AsyncSession):
        agency = await make_user(db_session, user_type="agence")
        headers = headers_for(agency)

        first = await client.post("/api/v1/listings", json=LISTING_DATA, headers=headers)
        second = await client.post("/api/v1/listings", json=LISTING_DATA, headers=headers)

        assert first.json()["needs_payment"] is False
        data = second.json()
        assert second.status_code == 201
        assert data["needs_payment"] is True
        assert Decimal(data["amount_due"]) == Decimal("1000")
        assert data["currency"] == "XOF"
        assert data["listing"]["is_active"] is False
        assert data["listing"]["pending_state"] == "payment_not_attempted"

    @pytest.mark.asyncio
    async def test_invalid_discount_rejected(self, client: AsyncClient, auth_headers: dict):
        response = await client.post(
            "/api/v1/listings", json={**LISTING_DATA, "discount_7_nights": "120"}, headers=auth_headers
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_create_requires_auth(self, client: AsyncClient):
        response = await client.post("/api/v1/listings", json=LISTING_DATA)
        assert response.status_code == 401


class TestReadListings:
    @pytest.mark.asyncio
    async def test_public_list_hides_inactive(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User
    ):
        active = await make_listing(db_session, test_user, city="Bouaké")
        await make_listing(db_session, test_user, is_active=False, city="Bouaké")

        response = await client.get("/api/v1/listings", params={"city": "bouaké"})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["id"] == str(active.id)
        assert data["items"][0]["pending_state"] is None

    @pytest.mark.asyncio
    async def test_inactive_listing_visible_to_owner_only(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict, other_headers: dict
    ):
        listing = await make_listing(db_session, test_user, is_active=False)

        owner_view = await client.get(f"/api/v1/listings/{listing.id}", headers=auth_headers)
        assert owner_view.status_code == 200
        assert owner_view.json()["pending_state"] == "payment_not_attempted"

        assert (await client.get(f"/api/v1/listings/{listing.id}", headers=other_headers)).status_code == 404
        assert (await client.get(f"/api/v1/listings/{listing.id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_mine_includes_pending(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        await make_listing(db_session, test_user)
        await make_listing(db_session, test_user, is_active=False)

        response = await client.get("/api/v1/listings/mine", headers=auth_headers)
        assert response.json()["total"] == 2


class TestUpdateAndDelete:
    @pytest.mark.asyncio
    async def test_update_content(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        listing = await make_listing(db_session, test_user)
        response = await client.put(
            f"/api/v1/listings/{listing.id}",
            json={"title": "Renamed", "discount_3_nights": "5"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "Renamed"
        assert Decimal(data["discount_3_nights"]) == Decimal("5")
        assert data["is_active"] is True

    @pytest.mark.asyncio
    async def test_update_by_other_user(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict
    ):
        listing = await make_listing(db_session, test_user)
        response = await client.put(f"/api/v1/listings/{listing.id}", json={"title": "Mine now"}, headers=other_headers)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_delete_is_admin_only(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        test_user: User,
        auth_headers: dict,
        admin_headers: dict,
    ):
        listing = await make_listing(db_session, test_user)

        assert (await client.delete(f"/api/v1/listings/{listing.id}", headers=auth_headers)).status_code == 403
        assert (await client.delete(f"/api/v1/listings/{listing.id}", headers=admin_headers)).status_code == 204
        assert (await client.get(f"/api/v1/listings/{listing.id}")).status_code == 404


class TestUseCredit:
    @pytest.mark.asyncio
    async def test_pending_listing_activated_with_credit(self, client: AsyncClient, db_session: AsyncSession):
        agency = await make_user(db_session, user_type="agence")
        await make_listing(db_session, agency, entitlement_source="free")
        pending = await make_listing(db_session, agency, is_active=False)
        await entitlement_service.grant_credits(
            db_session, agency.id, product_id="listing.single", transaction_id="tx-credit-1", credits=1, source="stripe"
        )

        response = await client.post(f"/api/v1/listings/{pending.id}/use-credit", headers=headers_for(agency))

        assert response.status_code == 200
        assert response.json()["is_active"] is True
        assert response.json()["entitlement_source"] == "purchased_credit"
        assert await entitlement_service.available_purchased_credits(db_session, agency.id) == 0

    @pytest.mark.asyncio
    async def test_no_entitlement_left(self, client: AsyncClient, db_session: AsyncSession):
        agency = await make_user(db_session, user_type="agence")
        await make_listing(db_session, agency, entitlement_source="free")
        pending = await make_listing(db_session, agency, is_active=False)

        response = await client.post(f"/api/v1/listings/{pending.id}/use-credit", headers=headers_for(agency))
        assert response.status_code == 402
        assert response.json()["detail"]["kind"] == "entitlement_exhausted"


class TestAvailability:
    @pytest.mark.asyncio
    async def test_blocked_dates_round_trip(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        listing = await make_listing(db_session, test_user, minimum_stay=2, discount_7_nights=Decimal("10"))
        day = days_from_today(5)

        added = await client.post(
            f"/api/v1/listings/{listing.id}/blocked-dates",
            json={"dates": [day.isoformat(), day.isoformat()]},
            headers=auth_headers,
        )
        assert added.status_code == 201
        assert added.json() == {"added": 1}

        response = await client.get(f"/api/v1/listings/{listing.id}/availability", params={"days": 30})
        assert response.status_code == 200
        data = response.json()
        assert day.isoformat() in data["disabled_dates"]
        assert data["minimum_stay"] == 2
        assert Decimal(data["discounts"]["7"]) == Decimal("10")

        removed = await client.request(
            "DELETE",
            f"/api/v1/listings/{listing.id}/blocked-dates",
            json={"dates": [day.isoformat()]},
            headers=auth_headers,
        )
        assert removed.json() == {"removed": 1}

    @pytest.mark.asyncio
    async def test_past_start_reports_cutoff(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User
    ):
        listing = await make_listing(db_session, test_user)
        start = days_from_today(-3)

        response = await client.get(
            f"/api/v1/listings/{listing.id}/availability", params={"start": start.isoformat(), "days": 10}
        )
        data = response.json()
        assert data["start"] == start.isoformat()
        assert data["disabled_before"] == days_from_today(0).isoformat()
        # The past is covered by the cutoff, not listed day by day
        assert data["disabled_dates"] == []

    @pytest.mark.asyncio
    async def test_long_term_listing_has_no_calendar(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User
    ):
        listing = await make_listing(db_session, test_user, listing_type="long_term")
        response = await client.get(f"/api/v1/listings/{listing.id}/availability")
        assert response.status_code == 422

"""Tests for reservation quote, request and decision endpoints."""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import days_from_today, make_listing
from marketplace.models.notification import Notification
from marketplace.models.user import User


def _stay(listing, start: int, end: int) -> dict:
    return {
        "property_id": str(listing.id),
        "check_in_date": days_from_today(start).isoformat(),
        "check_out_date": days_from_today(end).isoformat(),
    }


async def _request(client: AsyncClient, headers: dict, listing, start: int, end: int) -> dict:
    response = await client.post("/api/v1/reservations", json=_stay(listing, start, end), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestQuote:
    @pytest.mark.asyncio
    async def test_week_discount(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict
    ):
        listing = await make_listing(
            db_session, test_user, discount_3_nights=Decimal("5"), discount_7_nights=Decimal("10")
        )
        response = await client.post("/api/v1/reservations/quote", json=_stay(listing, 10, 17), headers=other_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["nights"] == 7
        assert Decimal(data["effective_price"]) == Decimal("18000")
        assert Decimal(data["total_price"]) == Decimal("126000")
        assert Decimal(data["savings"]) == Decimal("14000")
        assert data["tier_label"] == "7+ nights"
        assert data["currency"] == "XOF"

    @pytest.mark.asyncio
    async def test_reversed_range(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict
    ):
        listing = await make_listing(db_session, test_user)
        response = await client.post("/api/v1/reservations/quote", json=_stay(listing, 12, 10), headers=other_headers)
        assert response.status_code == 422
        assert response.json()["detail"]["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_below_minimum_stay(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict
    ):
        listing = await make_listing(db_session, test_user, minimum_stay=3)
        response = await client.post("/api/v1/reservations/quote", json=_stay(listing, 10, 12), headers=other_headers)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_inactive_listing(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict
    ):
        listing = await make_listing(db_session, test_user, is_active=False)
        response = await client.post("/api/v1/reservations/quote", json=_stay(listing, 10, 12), headers=other_headers)
        assert response.status_code == 404


class TestReservationFlow:
    @pytest.mark.asyncio
    async def test_request_approve_and_block(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        test_user: User,
        auth_headers: dict,
        other_user: User,
        other_headers: dict,
    ):
        listing = await make_listing(db_session, test_user)
        booking = await _request(client, other_headers, listing, 10, 13)
        assert booking["status"] == "pending"
        assert booking["total_nights"] == 3
        assert booking["owner_id"] == str(test_user.id)

        # The owner got an in-app notification
        notes = (
            await db_session.execute(select(Notification).where(Notification.user_id == test_user.id))
        ).scalars().all()
        assert [n.type for n in notes] == ["reservation_request"]

        approved = await client.patch(
            f"/api/v1/reservations/{booking['id']}/status", json={"status": "approved"}, headers=auth_headers
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"

        # Approved nights are no longer available, the check-out day is
        overlap = await client.post("/api/v1/reservations/quote", json=_stay(listing, 12, 14), headers=other_headers)
        assert overlap.status_code == 422
        after = await client.post("/api/v1/reservations/quote", json=_stay(listing, 13, 15), headers=other_headers)
        assert after.status_code == 200

    @pytest.mark.asyncio
    async def test_second_approval_on_same_dates_conflicts(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        test_user: User,
        auth_headers: dict,
        other_headers: dict,
    ):
        listing = await make_listing(db_session, test_user)
        first = await _request(client, other_headers, listing, 20, 23)
        second = await _request(client, other_headers, listing, 21, 24)

        ok = await client.patch(
            f"/api/v1/reservations/{first['id']}/status", json={"status": "approved"}, headers=auth_headers
        )
        assert ok.status_code == 200
        clash = await client.patch(
            f"/api/v1/reservations/{second['id']}/status", json={"status": "approved"}, headers=auth_headers
        )
        assert clash.status_code == 409

    @pytest.mark.asyncio
    async def test_owner_cannot_reserve_own_listing(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        listing = await make_listing(db_session, test_user)
        response = await client.post("/api/v1/reservations", json=_stay(listing, 10, 12), headers=auth_headers)
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_requester_cannot_decide(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict
    ):
        listing = await make_listing(db_session, test_user)
        booking = await _request(client, other_headers, listing, 10, 12)
        response = await client.patch(
            f"/api/v1/reservations/{booking['id']}/status", json={"status": "approved"}, headers=other_headers
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_cancel_then_cancel_again(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict
    ):
        listing = await make_listing(db_session, test_user)
        booking = await _request(client, other_headers, listing, 10, 12)

        first = await client.post(f"/api/v1/reservations/{booking['id']}/cancel", headers=other_headers)
        assert first.json()["status"] == "cancelled"
        again = await client.post(f"/api/v1/reservations/{booking['id']}/cancel", headers=other_headers)
        assert again.status_code == 409

    @pytest.mark.asyncio
    async def test_list_by_status(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        test_user: User,
        auth_headers: dict,
        other_headers: dict,
    ):
        listing = await make_listing(db_session, test_user)
        booking = await _request(client, other_headers, listing, 10, 12)
        await _request(client, other_headers, listing, 30, 32)
        await client.post(f"/api/v1/reservations/{booking['id']}/cancel", headers=other_headers)

        owner_view = await client.get("/api/v1/reservations", headers=auth_headers)
        assert owner_view.json()["total"] == 2
        pending = await client.get("/api/v1/reservations", params={"status": "pending"}, headers=other_headers)
        assert pending.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_stranger_cannot_see_reservation(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, other_headers: dict, admin_headers: dict
    ):
        listing = await make_listing(db_session, test_user)
        booking = await _request(client, other_headers, listing, 10, 12)
        response = await client.post(f"/api/v1/reservations/{booking['id']}/cancel", headers=admin_headers)
        assert response.status_code == 404

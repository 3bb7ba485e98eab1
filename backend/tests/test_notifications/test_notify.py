"""Tests for in-app notifications and the push endpoints."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import make_user
from marketplace.config import settings
from marketplace.errors import PushNotConfigured
from marketplace.models.notification import Notification
from marketplace.models.user import User
from marketplace.notifications.dispatch import DispatchResult
from marketplace.notifications.service import notify
from marketplace.notifications.tokens import register_device_token, resolve_tokens


class TestNotify:
    @pytest.mark.asyncio
    async def test_records_and_pushes(self, db_session: AsyncSession):
        user = await make_user(db_session)
        entity = uuid.uuid4()

        with patch("marketplace.notifications.service.dispatch", new_callable=AsyncMock) as mock_dispatch:
            note = await notify(db_session, user.id, "listing_published", entity_id=entity)

        assert note.type == "listing_published"
        assert note.is_read is False
        args, kwargs = mock_dispatch.await_args
        assert args[2] == "Listing published"
        assert kwargs["data"] == {"type": "listing_published", "entity_id": str(entity)}

    @pytest.mark.asyncio
    async def test_push_failure_does_not_propagate(self, db_session: AsyncSession):
        user = await make_user(db_session)
        with patch(
            "marketplace.notifications.service.dispatch",
            new_callable=AsyncMock,
            side_effect=PushNotConfigured(),
        ):
            await notify(db_session, user.id, "payment_approved")

        rows = (await db_session.execute(select(Notification).where(Notification.user_id == user.id))).scalars().all()
        assert [n.type for n in rows] == ["payment_approved"]


class TestDeviceEndpoints:
    @pytest.mark.asyncio
    async def test_register_and_unregister(
        self, client: AsyncClient, db_session: AsyncSession, test_user: User, auth_headers: dict
    ):
        body = {"token": "fcm-device-token", "platform": "android"}
        registered = await client.put("/api/v1/notifications/devices", json=body, headers=auth_headers)
        assert registered.status_code == 200
        assert registered.json() == body
        assert await resolve_tokens(db_session, test_user.id) == ["fcm-device-token"]

        removed = await client.request("DELETE", "/api/v1/notifications/devices", json=body, headers=auth_headers)
        assert removed.status_code == 204
        assert await resolve_tokens(db_session, test_user.id) == []

    @pytest.mark.asyncio
    async def test_unknown_platform(self, client: AsyncClient, auth_headers: dict):
        response = await client.put(
            "/api/v1/notifications/devices", json={"token": "t", "platform": "symbian"}, headers=auth_headers
        )
        assert response.status_code == 422


class TestPushEndpoint:
    @pytest.mark.asyncio
    async def test_admin_push(self, client: AsyncClient, test_user: User, admin_headers: dict):
        result = DispatchResult(sent=2, undeliverable=1)
        with patch("marketplace.api.v1.notifications.dispatch", new_callable=AsyncMock, return_value=result):
            response = await client.post(
                "/api/v1/notifications/push",
                json={"user_id": str(test_user.id), "title": "Hi", "body": "There"},
                headers=admin_headers,
            )
        assert response.status_code == 200
        assert response.json() == {"sent": 2, "undeliverable": 1, "removed": 0}

    @pytest.mark.asyncio
    async def test_push_not_configured(
        self, client: AsyncClient, db_session: AsyncSession, admin_headers: dict
    ):
        user = await make_user(db_session)
        await register_device_token(db_session, user.id, "fcm-phone", "android")
        with patch.object(settings, "firebase_service_account", ""):
            response = await client.post(
                "/api/v1/notifications/push",
                json={"user_id": str(user.id), "title": "Hi", "body": "There"},
                headers=admin_headers,
            )
        assert response.status_code == 500
        assert response.json()["detail"]["kind"] == "configuration"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/v1/notifications/push",
            json={"user_id": str(uuid.uuid4()), "title": "Hi", "body": "There"},
            headers=admin_headers,
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, client: AsyncClient, test_user: User, auth_headers: dict):
        response = await client.post(
            "/api/v1/notifications/push",
            json={"user_id": str(test_user.id), "title": "Hi", "body": "There"},
            headers=auth_headers,
        )
        assert response.status_code == 403

"""Firebase Cloud Messaging HTTP v1 sender.

Authenticates as the configured service account through google-auth; the
OAuth access token is cached on the credentials and refreshed once it is
about to expire.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2 import service_account

from marketplace.config import settings
from marketplace.errors import (
    ErrorKind,
    PaymentProviderError,
    PushNotConfigured,
    TokenInvalid,
    classify_provider_error,
)

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass(frozen=True, eq=False)
class ServiceAccount:
    project_id: str
    credentials: service_account.Credentials

    @classmethod
    def from_json(cls, raw: str) -> "ServiceAccount":
        if not raw:
            raise PushNotConfigured()
        try:
            info = json.loads(raw)
            info.setdefault("token_uri", DEFAULT_TOKEN_URI)
            credentials = service_account.Credentials.from_service_account_info(info, scopes=[FCM_SCOPE])
            return cls(project_id=info["project_id"], credentials=credentials)
        except (ValueError, KeyError, AttributeError) as exc:
            raise PushNotConfigured("Invalid service account JSON") from exc


def build_message(
    token: str,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    image_url: str | None = None,
) -> dict:
    """FCM v1 message with Android and APNs overrides."""
    android_notification: dict[str, Any] = {"sound": "default"}
    apns: dict[str, Any] = {
        "payload": {
            "aps": {
                "alert": {"title": title, "body": body},
                "sound": "default",
                "badge": 1,
                "mutable-content": 1,
                "content-available": 1,
            }
        }
    }
    if image_url:
        android_notification["image"] = image_url
        apns["fcm_options"] = {"image": image_url}

    return {
        "message": {
            "token": token,
            "notification": {"title": title, "body": body},
            # FCM only accepts string values in ``data``
            "data": {str(k): str(v) for k, v in (data or {}).items()},
            "android": {"priority": "high", "notification": android_notification},
            "apns": apns,
        }
    }


class FcmClient:
    """Sends messages for one service account over a shared ``httpx`` client."""

    def __init__(self, account: ServiceAccount, http: httpx.AsyncClient | None = None) -> None:
        self.account = account
        self._http = http or httpx.AsyncClient(timeout=settings.fcm_timeout_seconds)
        self._owns_http = http is None
        self._google_request = GoogleRequest()

    async def __aenter__(self) -> "FcmClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def access_token(self) -> str:
        credentials = self.account.credentials
        if credentials.valid:
            return credentials.token
        # google-auth's transport is blocking
        try:
            await asyncio.to_thread(credentials.refresh, self._google_request)
        except RefreshError as exc:
            logger.error("FCM token exchange refused: %s", exc)
            raise PushNotConfigured("Could not obtain push access token") from exc
        except TransportError as exc:
            raise PaymentProviderError("Push provider unreachable") from exc
        return credentials.token

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        image_url: str | None = None,
    ) -> None:
        """Deliver one message.

        Raises:
            TokenInvalid: FCM permanently rejected the token.
            PushNotConfigured: credentials were refused.
            PaymentProviderError: any other delivery failure.
        """
        url = FCM_SEND_URL.format(project_id=self.account.project_id)
        headers = {"Authorization": f"Bearer {await self.access_token()}"}
        try:
            response = await self._http.post(url, json=build_message(token, title, body, data, image_url), headers=headers)
        except httpx.HTTPError as exc:
            raise PaymentProviderError("Push provider unreachable") from exc
        if response.is_success:
            return

        try:
            error_body = response.json()
        except ValueError:
            error_body = {"error": {"code": response.status_code}}
        kind = classify_provider_error("fcm", error_body)
        if kind is ErrorKind.TOKEN_INVALID:
            raise TokenInvalid()
        if kind is ErrorKind.CONFIGURATION:
            raise PushNotConfigured("Push credentials rejected")
        raise PaymentProviderError(f"Push delivery failed with HTTP {response.status_code}")


@lru_cache(maxsize=1)
def _load_account(raw: str) -> ServiceAccount:
    return ServiceAccount.from_json(raw)


def get_fcm_client() -> FcmClient:
    """Client for the configured account; its credentials and token are shared across clients."""
    return FcmClient(_load_account(settings.firebase_service_account))

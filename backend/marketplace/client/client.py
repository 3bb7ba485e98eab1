"""Thin httpx wrapper over the marketplace HTTP API."""

import logging
import uuid
from decimal import Decimal
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class MarketplaceClient:
    """Authenticated calls used by the checkout flow.

    Pass ``http`` to share a client (or inject a mock transport); otherwise
    one is created and closed with the context manager.
    """

    TIMEOUT = 10.0

    def __init__(
        self,
        base_url: str,
        access_token: str | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=self.base_url, timeout=self.TIMEOUT)

    async def __aenter__(self) -> "MarketplaceClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._http.request(method, path, headers=self._headers(), **kwargs)
        response.raise_for_status()
        return response.json()

    async def start_checkout(
        self,
        amount: Decimal | int,
        listing_type: str,
        *,
        currency: str = "XOF",
        property_id: uuid.UUID | str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> dict:
        """Create a hosted checkout; returns ``checkout_url``, ``transaction_ref`` and ``session_id``."""
        body = {
            "amount": str(amount),
            "currency": currency,
            "listing_type": listing_type,
            "property_id": str(property_id) if property_id else None,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        return await self._request("POST", "/api/v1/billing/checkout", json=body)

    async def confirm_checkout(self, transaction_ref: str) -> dict:
        """Ask the server to reconcile ``transaction_ref`` with the processor now."""
        return await self._request("POST", "/api/v1/billing/confirm", json={"transaction_ref": transaction_ref})

    async def get_listing(self, listing_id: uuid.UUID | str) -> dict:
        return await self._request("GET", f"/api/v1/listings/{listing_id}")

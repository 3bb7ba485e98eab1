"""App Store receipt verification (verifyReceipt endpoint).

The same client build talks to both App Store environments, so a receipt
is checked against production first and against the sandbox when Apple
answers with status 21007.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from marketplace.config import settings
from marketplace.errors import (
    APP_STORE_SANDBOX_RECEIPT,
    APP_STORE_VALID,
    ErrorKind,
    PaymentProviderError,
    ProductNotInReceipt,
    ReceiptInvalid,
    classify_provider_error,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceiptPurchase:
    product_id: str
    transaction_id: str
    original_transaction_id: str | None = None
    purchase_date_ms: int | None = None
    expires_date_ms: int | None = None


@dataclass(frozen=True)
class VerifiedReceipt:
    status: int
    environment: str
    purchases: tuple[ReceiptPurchase, ...]

    def find(self, product_id: str) -> ReceiptPurchase:
        """Most recent purchase of ``product_id`` in the receipt.

        Raises:
            ProductNotInReceipt: the product is absent.
        """
        matches = [p for p in self.purchases if p.product_id == product_id]
        if not matches:
            raise ProductNotInReceipt(product_id=product_id)
        return max(matches, key=lambda p: p.purchase_date_ms or 0)


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_purchases(body: dict) -> tuple[ReceiptPurchase, ...]:
    entries = (body.get("receipt") or {}).get("in_app") or body.get("latest_receipt_info") or []
    return tuple(
        ReceiptPurchase(
            product_id=e["product_id"],
            transaction_id=str(e["transaction_id"]),
            original_transaction_id=e.get("original_transaction_id"),
            purchase_date_ms=_as_int(e.get("purchase_date_ms")),
            expires_date_ms=_as_int(e.get("expires_date_ms")),
        )
        for e in entries
        if e.get("product_id") and e.get("transaction_id")
    )


async def _post(http: httpx.AsyncClient, url: str, receipt: str) -> dict:
    try:
        response = await http.post(
            url,
            json={
                "receipt-data": receipt,
                "password": settings.app_store_shared_secret,
                "exclude-old-transactions": True,
            },
        )
        response.raise_for_status()
        return response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise PaymentProviderError("App Store verification unavailable") from exc


async def verify_receipt(receipt: str, http: httpx.AsyncClient | None = None) -> VerifiedReceipt:
    """Verify a base64 receipt with Apple.

    Raises:
        ReceiptInvalid: Apple rejected the receipt; carries Apple's status.
        PaymentProviderError: Apple was unreachable or reported a
            transient server condition.
    """
    owns_http = http is None
    http = http or httpx.AsyncClient(timeout=settings.app_store_timeout_seconds)
    try:
        environment = "production"
        body = await _post(http, settings.app_store_production_url, receipt)
        if body.get("status") == APP_STORE_SANDBOX_RECEIPT:
            logger.info("Sandbox receipt, retrying against the sandbox endpoint")
            environment = "sandbox"
            body = await _post(http, settings.app_store_sandbox_url, receipt)
    finally:
        if owns_http:
            await http.aclose()

    status = _as_int(body.get("status"))
    if status is None:
        raise PaymentProviderError("Malformed App Store response")
    if status != APP_STORE_VALID:
        logger.warning("App Store rejected receipt with status %s", status)
        if classify_provider_error("app_store", status) is ErrorKind.PAYMENT_PROVIDER:
            raise PaymentProviderError("App Store temporarily unavailable", status=status)
        raise ReceiptInvalid(status=status)

    return VerifiedReceipt(status=status, environment=environment, purchases=_parse_purchases(body))

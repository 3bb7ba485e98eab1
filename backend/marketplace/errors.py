"""Domain error taxonomy and vendor error classification.

Services raise these exceptions; routers translate them into HTTP responses
with :func:`raise_http` so no vendor detail leaks to clients.
"""

import enum
from typing import Any, NoReturn

import stripe
from fastapi import HTTPException, status


class ErrorKind(str, enum.Enum):
    """Internal classification every failure is reduced to."""

    VALIDATION = "validation"
    ENTITLEMENT_EXHAUSTED = "entitlement_exhausted"
    PAYMENT_PROVIDER = "payment_provider"
    RECEIPT_INVALID = "receipt_invalid"
    IDEMPOTENT_NO_OP = "idempotent_no_op"
    TOKEN_INVALID = "token_invalid"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    NOT_AUTHENTICATED = "not_authenticated"
    CONFIGURATION = "configuration"


class MarketplaceError(Exception):
    """Base class for all domain errors."""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.message, "kind": self.kind.value, **self.extra}


# --- Validation -------------------------------------------------------------


class ValidationError(MarketplaceError):
    kind = ErrorKind.VALIDATION
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid input"


class InvalidRange(ValidationError):
    default_message = "check_out must be after check_in"


class RangeTooShort(ValidationError):
    default_message = "Stay is shorter than the minimum number of nights"


class RangeOverlapsUnavailable(ValidationError):
    default_message = "Selected dates include unavailable days"


# --- Entitlements -----------------------------------------------------------


class EntitlementExhausted(MarketplaceError):
    kind = ErrorKind.ENTITLEMENT_EXHAUSTED
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "No free listing, credit or subscription allowance left"


# --- Payments ---------------------------------------------------------------


class PaymentProviderError(MarketplaceError):
    kind = ErrorKind.PAYMENT_PROVIDER
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Payment provider unavailable, try again"


class ReceiptInvalid(MarketplaceError):
    kind = ErrorKind.RECEIPT_INVALID
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid receipt"


class ProductNotInReceipt(ReceiptInvalid):
    default_message = "Product not found in receipt"


class IdempotentNoOp(MarketplaceError):
    """A reconciliation attempt hit an already-terminal transaction."""

    kind = ErrorKind.IDEMPOTENT_NO_OP
    status_code = status.HTTP_200_OK
    default_message = "Already processed"


class SessionNotFound(MarketplaceError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Checkout session not found"


class NotYetPaid(MarketplaceError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Payment not captured yet"


class TransactionClaimed(MarketplaceError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Transaction already claimed"


# --- Access -----------------------------------------------------------------


class NotFound(MarketplaceError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Forbidden(MarketplaceError):
    kind = ErrorKind.FORBIDDEN
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotAuthenticated(MarketplaceError):
    kind = ErrorKind.NOT_AUTHENTICATED
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class Conflict(MarketplaceError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


# --- Push -------------------------------------------------------------------


class TokenInvalid(MarketplaceError):
    """A push token was permanently rejected; cleaned up, never shown to users."""

    kind = ErrorKind.TOKEN_INVALID
    status_code = status.HTTP_410_GONE
    default_message = "Push token is no longer valid"


class PushNotConfigured(MarketplaceError):
    kind = ErrorKind.CONFIGURATION
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Firebase service account not configured"


def raise_http(exc: MarketplaceError) -> NoReturn:
    """Re-raise a domain error as the matching ``HTTPException``."""
    raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc


# ---------------------------------------------------------------------------
# Vendor code classification
# ---------------------------------------------------------------------------

APP_STORE_VALID = 0
APP_STORE_SANDBOX_RECEIPT = 21007
# Statuses Apple documents as transient server-side conditions.
_APP_STORE_RETRYABLE = {21005, 21009} | set(range(21100, 21200))

_FCM_DEAD_TOKEN_CODES = {"UNREGISTERED", "INVALID_ARGUMENT"}


def classify_provider_error(provider: str, payload: Any) -> ErrorKind:
    """Map a vendor-specific failure to an :class:`ErrorKind`.

    ``payload`` is what the vendor handed back: a ``stripe.StripeError`` for
    ``"stripe"``, the numeric verification status for ``"app_store"`` and the
    decoded JSON error body for ``"fcm"``.
    """
    if provider == "stripe":
        if isinstance(payload, stripe.SignatureVerificationError):
            return ErrorKind.FORBIDDEN
        if isinstance(payload, stripe.AuthenticationError):
            return ErrorKind.CONFIGURATION
        if isinstance(payload, (stripe.CardError, stripe.InvalidRequestError)):
            return ErrorKind.VALIDATION
        return ErrorKind.PAYMENT_PROVIDER

    if provider == "app_store":
        code = int(payload)
        if code == APP_STORE_VALID:
            raise ValueError("status 0 is not an error")
        if code in _APP_STORE_RETRYABLE:
            return ErrorKind.PAYMENT_PROVIDER
        return ErrorKind.RECEIPT_INVALID

    if provider == "fcm":
        error = (payload or {}).get("error") or {}
        codes = {d.get("errorCode") for d in error.get("details") or [] if isinstance(d, dict)}
        if codes & _FCM_DEAD_TOKEN_CODES:
            return ErrorKind.TOKEN_INVALID
        if error.get("code") in (401, 403):
            return ErrorKind.CONFIGURATION
        return ErrorKind.PAYMENT_PROVIDER

    raise ValueError(f"Unknown provider {provider!r}")

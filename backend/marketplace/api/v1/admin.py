"""Administrator endpoints: entitlement settings and mobile money review."""

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_current_admin_user, get_db
from marketplace.errors import Conflict, IdempotentNoOp, MarketplaceError, NotFound, ValidationError, raise_http
from marketplace.models.payment import Payment
from marketplace.models.user import User
from marketplace.notifications.service import notify
from marketplace.schemas.admin import (
    AdminPaymentResponse,
    ListingLimitSettings,
    PaymentDecisionResponse,
    PaymentRejectRequest,
    SubscriptionLimitSettings,
)
from marketplace.services import entitlement_service, payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

MOBILE_MONEY = "mobile_money"


@router.get("/settings/listing-limit", response_model=ListingLimitSettings)
async def get_listing_limit(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> ListingLimitSettings:
    limits = await entitlement_service.get_listing_limits(db)
    return ListingLimitSettings(**limits.as_dict())


@router.put("/settings/listing-limit", response_model=ListingLimitSettings)
async def update_listing_limit(
    body: ListingLimitSettings,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> ListingLimitSettings:
    """Replace the free quota and extra listing price."""
    value = body.model_dump()
    value["currency"] = value["currency"].upper()
    await entitlement_service.write_setting(db, entitlement_service.LISTING_LIMIT_KEY, value)
    return ListingLimitSettings(**value)


@router.get("/settings/subscription-limits", response_model=SubscriptionLimitSettings)
async def get_subscription_limits(
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> SubscriptionLimitSettings:
    return SubscriptionLimitSettings(**await entitlement_service.get_subscription_limits(db))


@router.put("/settings/subscription-limits", response_model=SubscriptionLimitSettings)
async def update_subscription_limits(
    body: SubscriptionLimitSettings,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> SubscriptionLimitSettings:
    """Monthly listing allowance per plan."""
    await entitlement_service.write_setting(db, entitlement_service.SUBSCRIPTION_LIMITS_KEY, body.model_dump())
    return body


# ---------------------------------------------------------------------------
# Payment review
# ---------------------------------------------------------------------------


async def _get_mobile_money_payment(db: AsyncSession, payment_id: uuid.UUID) -> Payment:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise_http(NotFound("Payment not found"))
    if payment.payment_method != MOBILE_MONEY:
        raise_http(
            ValidationError("Only mobile money payments are reviewed by hand", payment_method=payment.payment_method)
        )
    return payment


@router.get("/payments", response_model=list[AdminPaymentResponse])
async def list_payments(
    status: str | None = Query(None, pattern="^(pending|completed|failed)$"),
    payment_method: str | None = Query(MOBILE_MONEY),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> list[AdminPaymentResponse]:
    """Payments awaiting (or past) review, newest first."""
    payments = await payment_service.list_payments(
        db, status=status, payment_method=payment_method, limit=limit, offset=offset
    )
    return [AdminPaymentResponse.model_validate(p) for p in payments]


@router.post("/payments/{payment_id}/approve", response_model=PaymentDecisionResponse)
async def approve_payment(
    payment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin_user),
) -> PaymentDecisionResponse:
    """Confirm a mobile money transfer was received and grant what it pays for."""
    payment = await _get_mobile_money_payment(db, payment_id)
    try:
        outcome = await payment_service.complete_payment(
            db, payment.transaction_ref, payment.user_id, payment_method=MOBILE_MONEY, actor_id=admin.id
        )
    except IdempotentNoOp:
        raise_http(Conflict("Payment is already completed"))
    except MarketplaceError as exc:
        raise_http(exc)

    logger.info("Admin %s approved mobile money payment %s", admin.id, payment.transaction_ref)
    return PaymentDecisionResponse(
        payment=AdminPaymentResponse.model_validate(outcome.payment),
        activated_listing_id=outcome.activated_listing_id,
        credit_granted=outcome.credit_granted,
    )


@router.post("/payments/{payment_id}/reject", response_model=PaymentDecisionResponse)
async def reject_payment(
    payment_id: uuid.UUID,
    body: PaymentRejectRequest | None = None,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(get_current_admin_user),
) -> PaymentDecisionResponse:
    """Refuse a transfer that could not be matched; only pending payments can be refused."""
    payment = await _get_mobile_money_payment(db, payment_id)
    if not await payment_service.fail_payment(db, payment.transaction_ref):
        raise_http(Conflict("Payment is not pending", status=payment.status))

    reason = body.reason if body else None
    await notify(db, payment.user_id, "payment_rejected", actor_id=admin.id, entity_id=payment.id, body=reason)
    logger.info("Admin %s rejected mobile money payment %s", admin.id, payment.transaction_ref)
    payment = await payment_service.get_payment_by_ref(db, payment.transaction_ref)
    return PaymentDecisionResponse(payment=AdminPaymentResponse.model_validate(payment))

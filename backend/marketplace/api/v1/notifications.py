"""Push notification endpoints."""

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.deps import get_current_admin_user, get_current_user, get_db
from marketplace.errors import MarketplaceError, PaymentProviderError, raise_http
from marketplace.models.user import User
from marketplace.notifications import tokens
from marketplace.notifications.dispatch import dispatch
from marketplace.schemas.notification import (
    DeviceRegisterRequest,
    DeviceRegisterResponse,
    PushRequest,
    PushResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


@router.post("/push", response_model=PushResponse)
async def send_push(
    body: PushRequest,
    db: AsyncSession = Depends(get_db),
    _admin: User = Depends(get_current_admin_user),
) -> PushResponse:
    """Send a push to every registered device of a user (admin only)."""
    if await db.get(User, body.user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    try:
        result = await dispatch(
            db,
            body.user_id,
            body.title,
            body.body,
            data=body.data,
            image_url=body.image_url,
        )
    except httpx.HTTPError:
        logger.exception("Push delivery failed for user %s", body.user_id)
        raise_http(PaymentProviderError("Push provider unavailable"))
    except MarketplaceError as exc:
        raise_http(exc)
    return PushResponse(sent=result.sent, undeliverable=result.undeliverable, removed=result.removed)


@router.put("/devices", response_model=DeviceRegisterResponse)
async def register_device(
    body: DeviceRegisterRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> DeviceRegisterResponse:
    """Register (or refresh) a device token for the caller."""
    await tokens.register_device_token(db, current_user.id, body.token, body.platform)
    return DeviceRegisterResponse(token=body.token, platform=body.platform)


@router.delete("/devices", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_device(
    body: DeviceRegisterRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    await tokens.delete_token(db, current_user.id, body.token)

"""Pydantic v2 schemas for push notifications and device registration."""

import uuid
from typing import Any

from pydantic import BaseModel, Field


class PushRequest(BaseModel):
    user_id: uuid.UUID
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., max_length=2000)
    data: dict[str, Any] | None = None
    image_url: str | None = None


class PushResponse(BaseModel):
    sent: int
    undeliverable: int = 0
    removed: int = 0


class DeviceRegisterRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)
    platform: str = Field(..., pattern="^(ios|android|web)$")


class DeviceRegisterResponse(BaseModel):
    token: str
    platform: str

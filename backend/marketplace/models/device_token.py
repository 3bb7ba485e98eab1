"""Device token model: one row per registered push device."""

import uuid

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class DeviceToken(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "device_tokens"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token: Mapped[str] = mapped_column(String(512), nullable=False)
    platform: Mapped[str] = mapped_column(String(20), nullable=False)  # ios, android, web

    __table_args__ = (UniqueConstraint("user_id", "token", name="uq_device_tokens_user_token"),)

    def __repr__(self) -> str:
        return f"<DeviceToken(user_id={self.user_id}, platform={self.platform}, token={self.token[:8]}...)>"

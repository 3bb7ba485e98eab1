"""Subscription model: monthly plan with a listing-credit allowance."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's plan and how much of this period's allowance is used."""

    __tablename__ = "subscriptions"

    # One subscription per user (UNIQUE enforces one-to-one)
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )
    subscription_type: Mapped[str] = mapped_column(String(50), nullable=False)  # pro, premium
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Billing period
    period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    active_until: Mapped[datetime | None] = mapped_column(nullable=True)
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    # Relationships
    user: Mapped["User"] = relationship(back_populates="subscription", lazy="raise")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, type={self.subscription_type}, "
            f"active={self.is_active})>"
        )

"""Listing model: long-term rentals and short-stay properties."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

LISTING_TYPES = ("long_term", "short_term")
ENTITLEMENT_SOURCES = ("free", "subscription_credit", "purchased_credit", "payment")


class Listing(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A property published by an owner.

    A listing only becomes visible (``is_active``) once an entitlement was
    consumed for it or a payment for it completed.
    """

    __tablename__ = "listings"

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    city: Mapped[str | None] = mapped_column(String(255), default=None)
    country: Mapped[str | None] = mapped_column(String(100), default=None)
    listing_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # long_term, short_term
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), default=None)
    price_per_night: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), default=None)
    minimum_stay: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Length-of-stay discounts, percent; any combination may be set
    discount_3_nights: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), default=None)
    discount_5_nights: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), default=None)
    discount_7_nights: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), default=None)
    discount_14_nights: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), default=None)
    discount_30_nights: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), default=None)

    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    entitlement_source: Mapped[str | None] = mapped_column(String(50), default=None)
    published_at: Mapped[datetime | None] = mapped_column(default=None)

    # Relationships
    owner: Mapped["User"] = relationship(back_populates="listings", lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    __table_args__ = (CheckConstraint("minimum_stay >= 1", name="ck_listings_minimum_stay"),)

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, title={self.title!r}, type={self.listing_type!r}, active={self.is_active})>"

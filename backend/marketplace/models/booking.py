"""Booking model: short-stay reservation requests."""

import uuid
from datetime import date
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

BOOKING_STATUSES = ("pending", "approved", "rejected", "cancelled")


class Booking(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A stay requested by one user on another user's listing."""

    __tablename__ = "bookings"

    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False, index=True)

    # Price snapshot at request time
    total_nights: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_night: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relationships
    listing: Mapped["Listing"] = relationship(lazy="selectin")  # type: ignore[name-defined]  # noqa: F821

    __table_args__ = (
        CheckConstraint("check_out_date > check_in_date", name="ck_bookings_date_order"),
        Index("ix_bookings_property_dates", "property_id", "check_in_date"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, property_id={self.property_id}, status={self.status})>"

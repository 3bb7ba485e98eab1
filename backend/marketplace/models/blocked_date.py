"""Blocked date model: days an owner marked unavailable."""

import uuid
from datetime import date

from sqlalchemy import Date, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class BlockedDate(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "blocked_dates"

    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    blocked_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (UniqueConstraint("property_id", "blocked_date", name="uq_blocked_dates_property_day"),)

    def __repr__(self) -> str:
        return f"<BlockedDate(property_id={self.property_id}, day={self.blocked_date})>"

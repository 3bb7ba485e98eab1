"""Payment model: one row per external transaction reference."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A payment attempt for a listing publication, a credit or a catalogue product.

    ``completed`` is terminal. ``failed`` only gives way to ``completed`` when
    the processor reports a late success. ``transaction_ref`` is the
    idempotency key shared with the payment processor.
    """

    __tablename__ = "payments"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="XOF")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PAYMENT_PENDING)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)  # stripe, apple_iap, mobile_money
    transaction_ref: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    listing_type: Mapped[str | None] = mapped_column(String(50), default=None)
    property_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("listings.id", ondelete="SET NULL"),
        nullable=True,
    )
    provider_session_id: Mapped[str | None] = mapped_column(String(255), default=None)
    # Mobile money: the payer's wallet number and what the transfer buys
    sender_phone: Mapped[str | None] = mapped_column(String(30), default=None)
    product_id: Mapped[str | None] = mapped_column(String(100), default=None)
    completed_at: Mapped[datetime | None] = mapped_column(default=None)

    __table_args__ = (
        Index("ix_payments_user_property_status", "user_id", "property_id", "status"),
        Index("ix_payments_method_status", "payment_method", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payment(ref={self.transaction_ref!r}, status={self.status}, property_id={self.property_id})>"

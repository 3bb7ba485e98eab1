"""Credit purchase model: purchased and listing-payment credits."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class CreditPurchase(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A batch of listing credits, keyed by the vendor transaction id."""

    __tablename__ = "credit_purchases"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    original_transaction_id: Mapped[str | None] = mapped_column(String(255), default=None)
    credits_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    purchase_date: Mapped[datetime | None] = mapped_column(default=None)
    expiration_date: Mapped[datetime | None] = mapped_column(default=None)
    is_subscription: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False)  # stripe, apple_iap, mobile_money, listing_payment

    @property
    def remaining(self) -> int:
        return max(0, self.credits_amount - self.credits_used)

    def __repr__(self) -> str:
        return (
            f"<CreditPurchase(transaction_id={self.transaction_id!r}, "
            f"used={self.credits_used}/{self.credits_amount})>"
        )

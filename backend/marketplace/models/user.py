"""User model: accounts, profile type and legacy push token."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

USER_TYPES = ("particulier", "proprietaire", "agence", "demarcheur")


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A marketplace account that can publish listings and request stays."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    user_type: Mapped[str | None] = mapped_column(String(50), nullable=True)  # particulier, proprietaire, agence, demarcheur
    # Single token from before device_tokens existed; used only when no device row is registered.
    push_token: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[str] = mapped_column(String(50), default="user", nullable=False)  # user, admin

    # Relationships
    subscription: Mapped["Subscription | None"] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "Subscription", back_populates="user", uselist=False, lazy="selectin"
    )
    listings: Mapped[list["Listing"]] = relationship("Listing", back_populates="owner", lazy="raise")  # noqa: F821

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"

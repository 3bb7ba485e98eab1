"""Database plumbing: async engine, sessions, model base and shared helpers."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Insert, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace.config import settings


def _build_engine() -> AsyncEngine:
    return create_async_engine(
        settings.async_database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


engine = _build_engine()

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    """``created_at`` / ``updated_at`` maintained by the database clock."""

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())


class UUIDPrimaryKeyMixin:
    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)


def utcnow() -> datetime:
    """Current time as naive UTC, matching the timezone-less DB columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def insert_ignoring_conflicts(db: AsyncSession, model: type[Base], values: dict) -> Insert:
    """Build ``INSERT ... ON CONFLICT DO NOTHING`` for the session's dialect.

    Unique constraints are the only serialization point between concurrent
    reconciliation attempts, so inserts keyed by an external transaction id go
    through this statement and callers inspect ``rowcount`` to learn whether
    they won.
    """
    dialect = db.bind.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise NotImplementedError(f"insert-or-ignore is not supported on {dialect}")
    return stmt.on_conflict_do_nothing()


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Request-scoped session: committed when the handler returns, rolled back if it raises."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

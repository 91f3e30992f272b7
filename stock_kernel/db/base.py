"""
Declarative base for the stock tables.

Every model imports from here and nothing here imports from models/,
services/ or selectors/.

Conventions:
    - Primary keys are uuid4 values stored as String(36).  Row order never
      comes from the key; the movement ledger orders by ``seq``.
    - ``Decimal`` columns are Numeric(18, 4), the precision of weights and
      unit counts.  Quantities are never floats.
    - Timestamps go in and come out as aware UTC datetimes, SQLite included.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID bound as its 36-character string and loaded back as a UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, UUID):
            return value
        return UUID(value)


def _as_utc(value: datetime) -> datetime:
    # Naive values are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class UTCDateTime(TypeDecorator):
    """
    Timestamp stored in UTC.

    SQLite keeps the naive UTC text, so string comparison there orders the
    same way timestamptz comparison does on PostgreSQL.  The as-of movement
    queries depend on that.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = _as_utc(value)
        return value.replace(tzinfo=None) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):
        return None if value is None else _as_utc(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 4),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who created a row and when.

    ``updated_at`` is bookkeeping, so the immutability listeners let it
    change on rows whose stock fields are frozen.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="SYSTEM")

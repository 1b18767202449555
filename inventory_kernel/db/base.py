"""
Module: inventory_kernel.db.base
Responsibility: Declarative base and portable column types shared by every
    inventory table.
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    nothing here may import models/, services/, selectors/ or domain/.

Invariants enforced:
    - Every row has a uuid4 primary key stored as String(36).
    - Decimal columns are Numeric(28, 9): nine decimal places of base-unit
      quantity, never float.
    - Datetimes are UTC-aware when read back on both PostgreSQL and SQLite.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

QUANTITY_PRECISION = 28
QUANTITY_SCALE = 9


class UUIDString(TypeDecorator):
    """UUIDs as 36-character strings, so both backends share one schema."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """
    Aware UTC datetimes on every backend.

    Naive values are taken to be UTC.  SQLite has no zone support, so the
    zone is stripped on the way in and re-attached on the way out; that
    keeps expiry comparisons in SQL comparing UTC with UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
        return value.replace(tzinfo=None) if dialect.name == "sqlite" else value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(QUANTITY_PRECISION, QUANTITY_SCALE),
        datetime: UTCDateTime(),
        UUID: UUIDString(),
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Base for reference data that may be edited in place (units,
    conversions, products).  Ledger and reservation tables derive from
    Base directly and carry their own timestamps.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )

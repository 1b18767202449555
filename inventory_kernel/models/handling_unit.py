"""
Module: inventory_kernel.models.handling_unit
Responsibility: One row per discrete physical package (case, pallet, pack)
    of a product.  Intact handling units are what the auto-unpack path may
    open.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A handling unit is unpacked at most once (unpacked_at is set once and
      never cleared; see db/immutability.py).
    - Rows are never deleted.
    - Every change in a handling unit's life (receipt, unpacking) is
      appended to handling_unit_events; events are never updated or
      deleted.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UTCDateTime, UUIDString


class HandlingUnit(Base):
    """A sealed package holding quantity_in_base units of a product."""

    __tablename__ = "handling_units"

    __table_args__ = (
        Index(
            "idx_handling_unit_scope",
            "organization_id", "product_id", "unit_code", "unpacked_at",
        ),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Packaging unit (is_packaging = True)
    unit_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("units_of_measure.code"),
        nullable=False,
    )

    warehouse_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Label / SSCC barcode, when the caller has one
    code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    quantity_in_base: Mapped[Decimal] = mapped_column(Numeric(28, 9), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    unpacked_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        state = "unpacked" if self.unpacked_at else "intact"
        return f"<HandlingUnit {self.unit_code} {self.quantity_in_base} {state}>"


class HandlingUnitEventType(str, Enum):
    RECEIVED = "received"
    UNPACKED = "unpacked"


class HandlingUnitEvent(Base):
    """One entry in a handling unit's history."""

    __tablename__ = "handling_unit_events"

    __table_args__ = (
        Index("idx_handling_unit_event_unit", "handling_unit_id", "occurred_at"),
    )

    handling_unit_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("handling_units.id"),
        nullable=False,
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # HandlingUnitEventType value
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)

    warehouse_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    # What caused the event ("package_receipt", "auto_unpack", ...)
    source_doc_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_doc_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<HandlingUnitEvent {self.event_type} {self.handling_unit_id}>"

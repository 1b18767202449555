"""
Module: inventory_kernel.models.ledger
Responsibility: ORM persistence for inventory ledger entries -- the single
    source of truth for quantity on hand.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain value types (MovementType).

Invariants enforced:
    - quantity_in_base is always > 0; movement_type carries the direction
      (CHECK constraint).
    - Entries are never updated or deleted (ORM listeners in
      db/immutability.py).  Corrections are new entries.
    - Stock is never stored; it is folded from these rows on demand.

Failure modes:
    - IntegrityError on non-positive quantities.
    - ImmutabilityViolationError on UPDATE/DELETE.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UTCDateTime, UUIDString
from inventory_kernel.domain.movement import MovementType


class LedgerEntry(Base):
    """One immutable stock movement."""

    __tablename__ = "inventory_ledger"

    __table_args__ = (
        CheckConstraint("quantity_in_base > 0", name="ck_ledger_quantity_positive"),
        Index("idx_ledger_scope", "organization_id", "product_id", "warehouse_id"),
        Index("idx_ledger_occurred_at", "occurred_at"),
        Index("idx_ledger_source_doc", "source_doc_type", "source_doc_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    warehouse_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    movement_type: Mapped[MovementType] = mapped_column(String(20), nullable=False)

    # Always positive; movement_type determines the sign
    quantity_in_base: Mapped[Decimal] = mapped_column(Numeric(28, 9), nullable=False)

    # Unit and quantity as entered, for audit
    unit_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("units_of_measure.code"),
        nullable=False,
    )

    quantity_in_entered_unit: Mapped[Decimal] = mapped_column(Numeric(28, 9), nullable=False)

    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)

    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # Stock held inside handling units (packaged receipts, disassembly_out)
    is_packaged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    source_doc_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    source_doc_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    note: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    # Position within one append (for deterministic ordering)
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry {MovementType(self.movement_type).value} "
            f"{self.quantity_in_base} product={self.product_id}>"
        )

    @property
    def signed_quantity(self) -> Decimal:
        """Return quantity with sign based on movement type.

        Postconditions: Inflows are positive, outflows are negative.
        """
        return self.quantity_in_base * MovementType(self.movement_type).sign

"""
Module: inventory_kernel.models.reservation
Responsibility: ORM persistence for stock reservations (holds against future
    consumption that never touch the ledger).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - State machine: active -> released (terminal).  active -> active via
      extend.  There is no way back to active.
    - Only released_at, release_reason and expires_at may change after
      insert; rows are never deleted (ORM listeners in db/immutability.py).
    - quantity_in_base > 0.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UTCDateTime, UUIDString


class ReservationType(str, Enum):
    """Soft holds are informational; hard holds are checked against stock."""

    SOFT = "soft"
    HARD = "hard"


class ReservationStatus(str, Enum):
    """Derived status (never stored)."""

    ACTIVE = "active"
    EXPIRED = "expired"
    RELEASED = "released"


RELEASE_REASON_EXPIRED = "expired"


class Reservation(Base):
    """A hold of base-unit stock for a referenced document line."""

    __tablename__ = "inventory_reservations"

    __table_args__ = (
        CheckConstraint("quantity_in_base > 0", name="ck_reservation_quantity_positive"),
        Index("idx_reservation_reference", "organization_id", "reference_type", "reference_id"),
        Index("idx_reservation_product", "organization_id", "product_id"),
        Index("idx_reservation_open", "released_at", "expires_at"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    warehouse_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    handling_unit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("handling_units.id"),
        nullable=True,
    )

    reservation_type: Mapped[ReservationType] = mapped_column(
        String(10),
        default=ReservationType.SOFT,
        nullable=False,
    )

    quantity_in_base: Mapped[Decimal] = mapped_column(Numeric(28, 9), nullable=False)

    # Unit the hold was requested in, for display
    unit_code: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # What the hold is for, e.g. ("sales_order_line", <line id>)
    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # None means a permanent hold; the sweeper never touches it
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    release_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Reservation {self.id} {self.quantity_in_base} {self.reference_type}:{self.reference_id}>"

    @property
    def is_released(self) -> bool:
        return self.released_at is not None

    def status_at(self, now: datetime) -> ReservationStatus:
        """Derive the reservation status at ``now``.

        Postconditions: RELEASED wins over EXPIRED; a reservation without
        expires_at is never EXPIRED.
        """
        if self.released_at is not None:
            return ReservationStatus.RELEASED
        if self.expires_at is not None and self.expires_at <= now:
            return ReservationStatus.EXPIRED
        return ReservationStatus.ACTIVE

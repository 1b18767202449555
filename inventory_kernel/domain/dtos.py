"""
Domain DTOs -- frozen value objects passed between services, selectors and
the facade.  Zero I/O.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from inventory_kernel.domain.movement import MovementType


@dataclass(frozen=True)
class SaleLine:
    """One requested line of a sale, in the unit the customer ordered."""

    quantity: Decimal
    unit_code: str


@dataclass(frozen=True)
class LedgerEntryDraft:
    """A ledger entry before it is persisted by InventoryLedger.append()."""

    organization_id: UUID
    product_id: UUID
    movement_type: MovementType
    quantity_in_base: Decimal
    unit_code: str
    quantity_in_entered_unit: Decimal
    occurred_at: datetime
    warehouse_id: UUID | None = None
    unit_cost: Decimal | None = None
    currency: str | None = None
    is_packaged: bool = False
    source_doc_type: str | None = None
    source_doc_id: UUID | None = None
    note: str | None = None


@dataclass(frozen=True)
class StockSnapshot:
    """
    Derived stock level for one scope.  Never stored.

    on_hand is loose stock: what sales draw from and what current stock
    reports.  packaged is stock still sealed in handling units.
    """

    organization_id: UUID
    product_id: UUID
    warehouse_id: UUID | None
    unit_code: str
    on_hand: Decimal
    packaged: Decimal
    by_movement_type: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return self.on_hand + self.packaged


@dataclass(frozen=True)
class LedgerEntryInfo:
    """Read model of one ledger entry, for history displays."""

    entry_id: UUID
    occurred_at: datetime
    movement_type: MovementType
    quantity_in_base: Decimal
    signed_quantity: Decimal
    unit_code: str
    quantity_in_entered_unit: Decimal
    warehouse_id: UUID | None
    is_packaged: bool
    note: str | None


@dataclass(frozen=True)
class ReservationInfo:
    """Read model of a reservation."""

    reservation_id: UUID
    organization_id: UUID
    product_id: UUID
    warehouse_id: UUID | None
    batch_id: UUID | None
    handling_unit_id: UUID | None
    reservation_type: str
    quantity_in_base: Decimal
    unit_code: str | None
    reference_type: str
    reference_id: str
    notes: str | None
    created_at: datetime
    expires_at: datetime | None
    released_at: datetime | None
    release_reason: str | None
    status: str


@dataclass(frozen=True)
class ProductInfo:
    """The catalog facts the kernel needs about a product."""

    product_id: UUID
    organization_id: UUID
    sku: str
    base_unit_code: str
    is_physical: bool
    is_active: bool


@dataclass(frozen=True)
class HandlingUnitEventInfo:
    event_type: str
    occurred_at: datetime
    warehouse_id: UUID | None
    source_doc_type: str | None
    source_doc_id: UUID | None
    note: str | None


@dataclass(frozen=True)
class HandlingUnitInfo:
    """Read model of a handling unit with its history, oldest event first."""

    handling_unit_id: UUID
    organization_id: UUID
    product_id: UUID
    unit_code: str
    warehouse_id: UUID | None
    code: str | None
    quantity_in_base: Decimal
    created_at: datetime
    unpacked_at: datetime | None
    history: tuple[HandlingUnitEventInfo, ...] = ()

    @property
    def status(self) -> str:
        return "intact" if self.unpacked_at is None else "unpacked"

"""ORM models for the inventory kernel."""

from inventory_kernel.models.handling_unit import (
    HandlingUnit,
    HandlingUnitEvent,
    HandlingUnitEventType,
)
from inventory_kernel.models.ledger import LedgerEntry
from inventory_kernel.models.product import Product, ProductUnitOverride
from inventory_kernel.models.reservation import (
    RELEASE_REASON_EXPIRED,
    Reservation,
    ReservationStatus,
    ReservationType,
)
from inventory_kernel.models.stock_lock import ALL_WAREHOUSES_SCOPE, StockLock
from inventory_kernel.models.uom import (
    GlobalUnitConversion,
    UnitCategory,
    UnitOfMeasure,
    UnitSystem,
)

__all__ = [
    "ALL_WAREHOUSES_SCOPE",
    "GlobalUnitConversion",
    "HandlingUnit",
    "HandlingUnitEvent",
    "HandlingUnitEventType",
    "LedgerEntry",
    "Product",
    "ProductUnitOverride",
    "RELEASE_REASON_EXPIRED",
    "Reservation",
    "ReservationStatus",
    "ReservationType",
    "StockLock",
    "UnitCategory",
    "UnitOfMeasure",
    "UnitSystem",
]

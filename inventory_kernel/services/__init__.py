"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.conversion_resolver import UnitConversionResolver
from inventory_kernel.services.ledger_service import InventoryLedger
from inventory_kernel.services.movement_service import (
    AdjustmentResult,
    MovementService,
    PackageReceiptResult,
    ReceiveResult,
    SaleResult,
)
from inventory_kernel.services.reference_data_service import ReferenceDataService
from inventory_kernel.services.reservation_service import ReservationService
from inventory_kernel.services.stock_lock_service import StockLockService

__all__ = [
    "AdjustmentResult",
    "InventoryLedger",
    "MovementService",
    "PackageReceiptResult",
    "ReceiveResult",
    "ReferenceDataService",
    "ReservationService",
    "SaleResult",
    "StockLockService",
    "UnitConversionResolver",
]

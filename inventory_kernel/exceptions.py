"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the kernel (order validation, document posting, reporting) have
to react differently to "the product does not exist", "there is not enough
stock" and "the unit cannot be converted".  Matching on message text is
fragile, so every failure here is:

  1. A TYPED exception class (catch by type, not message)
  2. Carrying a CODE attribute (machine-readable, API-safe)
  3. Carrying structured DATA (product id, quantities, unit codes)

Example:
    try:
        movements.sell(org_id, product_id, lines)
    except InsufficientStockError as e:
        api_response(code=e.code, requested=e.requested, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- ReservationNotFoundError
    |   +-- UnitNotFoundError
    |   +-- HandlingUnitNotFoundError
    |   +-- ConversionNotFoundError      (also a ConversionError)
    |
    +-- InvalidStateError
    |   +-- ProductNotPhysicalError
    |   +-- InvalidReservationTransitionError
    |
    +-- ConversionError
    |   +-- InvalidConversionFactorError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- InsufficientPackagesToUnpackError
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidCurrencyError
    |   +-- InvalidReservationError
    |   +-- DuplicateReferenceDataError
    |   +-- NotAPackagingUnitError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConcurrencyError
        +-- TransactionConflictError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                             | When Raised
-------------|----------------------------------|-----------------------------------
NotFound     | PRODUCT_NOT_FOUND                | Product missing in organization
             | RESERVATION_NOT_FOUND            | Reservation id missing
             | UNIT_NOT_FOUND                   | Unit of measure code unknown
             | HANDLING_UNIT_NOT_FOUND          | Package id missing for product
             | CONVERSION_NOT_FOUND             | No override/global factor for pair
-------------|----------------------------------|-----------------------------------
InvalidState | PRODUCT_NOT_PHYSICAL             | Stock movement on a service product
             | INVALID_RESERVATION_TRANSITION   | Extend of a released reservation
-------------|----------------------------------|-----------------------------------
Conversion   | INVALID_CONVERSION_FACTOR        | Factor <= 0, NaN or infinite
-------------|----------------------------------|-----------------------------------
Stock        | INSUFFICIENT_STOCK               | Sale/hold exceeds stock
             | INSUFFICIENT_PACKAGES_TO_UNPACK  | Not enough intact packages
-------------|----------------------------------|-----------------------------------
Validation   | INVALID_QUANTITY                 | Quantity <= 0 or not finite
             | INVALID_CURRENCY                 | Not an ISO 4217 code
             | INVALID_RESERVATION              | Bad reservation request
             | DUPLICATE_REFERENCE_DATA         | Unit/conversion already exists
             | NOT_A_PACKAGING_UNIT             | Packaged receipt in loose unit
-------------|----------------------------------|-----------------------------------
Immutability | IMMUTABILITY_VIOLATION           | Ledger/reservation rewrite
-------------|----------------------------------|-----------------------------------
Concurrency  | TRANSACTION_CONFLICT             | Retries exhausted on conflicts
"""

from decimal import Decimal
from uuid import UUID


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(InventoryKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Product does not exist in the organization."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: UUID | str, organization_id: UUID | str | None = None):
        self.product_id = str(product_id)
        self.organization_id = str(organization_id) if organization_id else None
        super().__init__(f"Product not found: {product_id}")


class ReservationNotFoundError(NotFoundError):
    """Reservation does not exist in the organization."""

    code: str = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: UUID | str):
        self.reservation_id = str(reservation_id)
        super().__init__(f"Reservation not found: {reservation_id}")


class UnitNotFoundError(NotFoundError):
    """Unit of measure code is not registered."""

    code: str = "UNIT_NOT_FOUND"

    def __init__(self, unit_code: str):
        self.unit_code = unit_code
        super().__init__(f"Unit of measure not found: {unit_code}")


class HandlingUnitNotFoundError(NotFoundError):
    """Handling unit does not exist for the product in the organization."""

    code: str = "HANDLING_UNIT_NOT_FOUND"

    def __init__(self, handling_unit_id: UUID | str):
        self.handling_unit_id = str(handling_unit_id)
        super().__init__(f"Handling unit not found: {handling_unit_id}")


# Invalid-state exceptions


class InvalidStateError(InventoryKernelError):
    """Base exception for operations not allowed in the entity's state."""

    code: str = "INVALID_STATE"


class ProductNotPhysicalError(InvalidStateError):
    """Stock movements are only recorded for physical products."""

    code: str = "PRODUCT_NOT_PHYSICAL"

    def __init__(self, product_id: UUID | str):
        self.product_id = str(product_id)
        super().__init__(f"Product {product_id} is not a physical product")


class InvalidReservationTransitionError(InvalidStateError):
    """Reservation state machine does not allow the requested transition."""

    code: str = "INVALID_RESERVATION_TRANSITION"

    def __init__(self, reservation_id: UUID | str, current_state: str, action: str):
        self.reservation_id = str(reservation_id)
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Cannot {action} reservation {reservation_id} in state {current_state}"
        )


# Conversion exceptions


class ConversionError(InventoryKernelError):
    """Base exception for unit conversion errors."""

    code: str = "CONVERSION_ERROR"


class ConversionNotFoundError(ConversionError, NotFoundError):
    """No product override or global conversion links the two units."""

    code: str = "CONVERSION_NOT_FOUND"

    def __init__(self, from_unit: str, to_unit: str, product_id: UUID | str | None = None):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.product_id = str(product_id) if product_id else None
        super().__init__(f"No conversion from {from_unit} to {to_unit}")


class InvalidConversionFactorError(ConversionError):
    """Conversion factors must be strictly positive and finite."""

    code: str = "INVALID_CONVERSION_FACTOR"

    def __init__(
        self,
        from_unit: str,
        to_unit: str,
        factor: object,
        reason: str = "must be positive and finite",
    ):
        self.from_unit = from_unit
        self.to_unit = to_unit
        self.factor = str(factor)
        self.reason = reason
        super().__init__(
            f"Invalid conversion factor {factor} for {from_unit} -> {to_unit}: {reason}"
        )


# Stock exceptions


class StockError(InventoryKernelError):
    """Base exception for stock-level failures."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Requested quantity exceeds the stock available in scope."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: UUID | str,
        requested: Decimal,
        available: Decimal,
        warehouse_id: UUID | str | None = None,
    ):
        self.product_id = str(product_id)
        self.requested = requested
        self.available = available
        self.warehouse_id = str(warehouse_id) if warehouse_id else None
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested}, available {available}"
        )


class InsufficientPackagesToUnpackError(StockError):
    """Auto-unpack needs more intact packages than are on hand."""

    code: str = "INSUFFICIENT_PACKAGES_TO_UNPACK"

    def __init__(
        self,
        product_id: UUID | str,
        unit_code: str,
        packages_needed: int,
        packages_available: int,
    ):
        self.product_id = str(product_id)
        self.unit_code = unit_code
        self.packages_needed = packages_needed
        self.packages_available = packages_available
        super().__init__(
            f"Need {packages_needed} {unit_code} package(s) of product "
            f"{product_id} to unpack, only {packages_available} available"
        )


# Validation exceptions


class ValidationError(InventoryKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantities must be strictly positive and finite."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, reason: str = "must be greater than zero"):
        self.quantity = str(quantity)
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class InvalidCurrencyError(ValidationError):
    """Currency code is not a valid ISO 4217 code."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: {currency}")


class InvalidReservationError(ValidationError):
    """Reservation request is malformed (quantity, deadline, references)."""

    code: str = "INVALID_RESERVATION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid reservation: {reason}")


class DuplicateReferenceDataError(ValidationError):
    """Unit, conversion or override already exists."""

    code: str = "DUPLICATE_REFERENCE_DATA"

    def __init__(self, entity_type: str, key: str):
        self.entity_type = entity_type
        self.key = key
        super().__init__(f"{entity_type} already exists: {key}")


class NotAPackagingUnitError(ValidationError):
    """Unit is not flagged as a packaging unit."""

    code: str = "NOT_A_PACKAGING_UNIT"

    def __init__(self, unit_code: str):
        self.unit_code = unit_code
        super().__init__(f"Unit {unit_code} is not a packaging unit")


# Immutability exceptions


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries are immutable from creation.  Reservations may only
    change through release or extend.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class TransactionConflictError(ConcurrencyError):
    """Transaction kept failing on serialization/deadlock conflicts."""

    code: str = "TRANSACTION_CONFLICT"

    def __init__(self, operation: str, attempts: int):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"{operation} aborted after {attempts} conflicting attempt(s)"
        )

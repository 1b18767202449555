"""
Movement types and the stock fold -- pure functional core.

Responsibility:
    Defines the closed set of ledger movement types and how each one
    contributes to on-hand stock.  Quantities on the ledger are always
    positive; the movement type alone carries the sign.

Architecture position:
    Kernel > Domain -- zero I/O.  Imported by models/ (column values),
    selectors/ (aggregation) and services/ (entry construction).

Invariants enforced:
    - Every movement type is either an inflow or an outflow, never both.
    - fold_movements() never mutates its input and is order-independent.
"""

from collections.abc import Iterable
from decimal import Decimal
from enum import Enum


class MovementType(str, Enum):
    """Kind of stock movement recorded on the ledger.

    Contract: Every LedgerEntry has exactly one movement type.
    Guarantees: Quantity is always positive; the type determines the sign.
    """

    RECEIPT = "receipt"
    ISSUE = "issue"
    ADJUSTMENT_POS = "adjustment_pos"
    ADJUSTMENT_NEG = "adjustment_neg"
    DISASSEMBLY_IN = "disassembly_in"
    DISASSEMBLY_OUT = "disassembly_out"

    @property
    def is_inflow(self) -> bool:
        return self in INFLOW_TYPES

    @property
    def sign(self) -> int:
        """+1 for inflows, -1 for outflows."""
        return 1 if self.is_inflow else -1


INFLOW_TYPES: frozenset[MovementType] = frozenset({
    MovementType.RECEIPT,
    MovementType.ADJUSTMENT_POS,
    MovementType.DISASSEMBLY_IN,
})

OUTFLOW_TYPES: frozenset[MovementType] = frozenset({
    MovementType.ISSUE,
    MovementType.ADJUSTMENT_NEG,
    MovementType.DISASSEMBLY_OUT,
})


class AdjustmentDirection(str, Enum):
    """Direction of a manual stock adjustment."""

    POS = "pos"
    NEG = "neg"

    @property
    def movement_type(self) -> MovementType:
        if self is AdjustmentDirection.POS:
            return MovementType.ADJUSTMENT_POS
        return MovementType.ADJUSTMENT_NEG


def signed_quantity(movement_type: MovementType | str, quantity: Decimal) -> Decimal:
    """Net contribution of one movement to on-hand stock."""
    return quantity * MovementType(movement_type).sign


def fold_movements(
    movements: Iterable[tuple[MovementType | str, Decimal]],
) -> Decimal:
    """
    Fold (movement_type, quantity) pairs into a net stock quantity.

    sum(receipt, adjustment_pos, disassembly_in)
        - sum(issue, adjustment_neg, disassembly_out)
    """
    total = Decimal("0")
    for movement_type, quantity in movements:
        total += signed_quantity(movement_type, quantity)
    return total

"""
Warehouse allocation for organization-wide outflows -- pure functional core.

Responsibility:
    A sale or negative adjustment that names no warehouse still has to
    take its stock out of the warehouses that hold it, or a later
    warehouse-scoped sale would see those units as still on the shelf.
    draw_down() splits the outflow across the per-warehouse loose
    balances.

Architecture position:
    Kernel > Domain -- zero I/O.  MovementService reads the balances
    (StockSelector.on_hand_by_warehouse) and books one ledger entry per
    part.

Invariants enforced:
    - Only positive balances are drawn from, and never below zero.
    - Stock held without a warehouse is used first, then warehouses from
      largest balance down (ties by id), so most outflows stay in one
      warehouse.
    - The parts of every amount sum to exactly that amount.

Failure modes:
    - InsufficientStockError when the positive balances cannot cover the
      total.
"""

from collections.abc import Hashable, Mapping, Sequence
from decimal import Decimal
from typing import TypeVar

from inventory_kernel.exceptions import InsufficientStockError

K = TypeVar("K", bound=Hashable)


def source_order(balances: Mapping[K, Decimal]) -> list[K]:
    """Keys of the positive balances in the order they are drawn from."""
    positive = [key for key, quantity in balances.items() if quantity > 0]
    return sorted(
        positive,
        key=lambda key: (key is not None, -balances[key], str(key)),
    )


def draw_down(
    product_id,
    balances: Mapping[K, Decimal],
    amounts: Sequence[Decimal],
) -> list[list[tuple[K, Decimal]]]:
    """
    Split each amount into (key, quantity) parts drawn from ``balances``.

    Returns one list of parts per amount, in the order of ``amounts``.
    ``balances`` itself is not modified.
    """
    total = sum(amounts, Decimal("0"))
    order = source_order(balances)
    remaining = {key: balances[key] for key in order}
    coverable = sum(remaining.values(), Decimal("0"))
    if coverable < total:
        raise InsufficientStockError(product_id, total, coverable)

    # None is a real key (stock held without a warehouse), so walk by index
    position = 0
    allocations: list[list[tuple[K, Decimal]]] = []
    for amount in amounts:
        parts: list[tuple[K, Decimal]] = []
        outstanding = amount
        while outstanding > 0:
            while remaining[order[position]] <= 0:
                position += 1
            current = order[position]
            taken = min(outstanding, remaining[current])
            remaining[current] -= taken
            outstanding -= taken
            if parts and parts[-1][0] == current:
                parts[-1] = (current, parts[-1][1] + taken)
            else:
                parts.append((current, taken))
        allocations.append(parts)
    return allocations

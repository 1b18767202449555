"""
Unit conversion resolution -- pure functional core.

Responsibility:
    Computes the multiplicative factor between two units for one product:
    ``quantity_in(to_unit) = quantity_in(from_unit) * factor``.

Architecture position:
    Kernel > Domain -- zero I/O.  The lookups are passed in as callables;
    services/conversion_resolver.py backs them with database queries.

Invariants enforced:
    - Product overrides always win over the global table.
    - No multi-hop conversion: one override or one global lookup.
    - Factors are exact rationals, so resolve(A, B) * resolve(B, A) == 1
      for every resolvable pair.
    - Every factor returned is strictly positive.

Failure modes:
    - ConversionNotFoundError when neither an override nor a global entry
      (in either direction) links the two units.
    - InvalidConversionFactorError when stored data holds a factor <= 0.
"""

from collections.abc import Callable
from decimal import Decimal
from fractions import Fraction

from inventory_kernel.exceptions import (
    ConversionNotFoundError,
    InvalidConversionFactorError,
)

ONE = Fraction(1)

OverrideLookup = Callable[[str], Decimal | None]
GlobalLookup = Callable[[str, str], Decimal | None]


def _exact(value: Decimal, from_unit: str, to_unit: str) -> Fraction:
    if not value.is_finite() or value <= 0:
        raise InvalidConversionFactorError(from_unit, to_unit, value)
    return Fraction(value)


def resolve_factor(
    from_unit: str,
    to_unit: str,
    base_unit: str,
    override_for: OverrideLookup,
    global_factor: GlobalLookup,
    product_id: object = None,
) -> Fraction:
    """
    Resolve the factor converting ``from_unit`` quantities into ``to_unit``.

    Algorithm:
        1. Same unit -> 1.
        2. One side is the base unit -> the override of the other unit
           (q base units per unit): unit -> base is q, base -> unit is 1/q.
        3. Global table, exact pair; else reverse pair inverted.
        4. ConversionNotFoundError.

    Args:
        override_for: unit code -> quantity in base unit, or None.
        global_factor: (from, to) -> stored factor, or None.
    """
    if from_unit == to_unit:
        return ONE

    if to_unit == base_unit:
        quantity = override_for(from_unit)
        if quantity is not None:
            return _exact(quantity, from_unit, to_unit)
    elif from_unit == base_unit:
        quantity = override_for(to_unit)
        if quantity is not None:
            return 1 / _exact(quantity, to_unit, from_unit)

    factor = global_factor(from_unit, to_unit)
    if factor is not None:
        return _exact(factor, from_unit, to_unit)

    reverse = global_factor(to_unit, from_unit)
    if reverse is not None:
        return 1 / _exact(reverse, to_unit, from_unit)

    raise ConversionNotFoundError(from_unit, to_unit, product_id)

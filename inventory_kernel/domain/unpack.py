"""
Auto-unpack planning -- pure functional core.

Responsibility:
    Given a base-unit deficit and the packaging options configured for a
    product, decide which packaging unit to open and how many packages.

Architecture position:
    Kernel > Domain -- zero I/O.  MovementService gathers the options and
    executes the plan.

Invariants enforced:
    - Never plans more than ceil(deficit / package_size) packages.
    - Deterministic choice: smallest package first, then unit code; the
      first option with enough intact packages is used.
    - The planned inflow always covers the deficit.

Failure modes:
    - InsufficientStockError when no packaging unit is configured.
    - InsufficientPackagesToUnpackError when packaging exists but no option
      has enough intact packages (reported against the preferred option).
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

from inventory_kernel.exceptions import (
    InsufficientPackagesToUnpackError,
    InsufficientStockError,
)


@dataclass(frozen=True)
class PackagingOption:
    """A packaging unit of a product and how many intact packages exist."""

    unit_code: str
    package_size: Decimal
    packages_available: int


@dataclass(frozen=True)
class UnpackPlan:
    unit_code: str
    package_size: Decimal
    packages: int

    @property
    def quantity_in_base(self) -> Decimal:
        return self.package_size * self.packages


def packages_needed(deficit: Decimal, package_size: Decimal) -> int:
    """Ceiling division: the minimum number of packages covering deficit."""
    if deficit <= 0:
        return 0
    return int((deficit / package_size).to_integral_value(rounding=ROUND_CEILING))


def order_options(options: list[PackagingOption]) -> list[PackagingOption]:
    return sorted(options, key=lambda o: (o.package_size, o.unit_code))


def plan_unpack(
    product_id: object,
    requested: Decimal,
    on_hand: Decimal,
    options: list[PackagingOption],
) -> UnpackPlan:
    """
    Plan the unpacking that covers ``requested - on_hand``.

    Preconditions: requested > on_hand.
    """
    deficit = requested - on_hand
    ordered = order_options([o for o in options if o.package_size > 0])
    if not ordered:
        raise InsufficientStockError(product_id, requested, on_hand)

    for option in ordered:
        needed = packages_needed(deficit, option.package_size)
        if option.packages_available >= needed:
            return UnpackPlan(option.unit_code, option.package_size, needed)

    preferred = ordered[0]
    raise InsufficientPackagesToUnpackError(
        product_id,
        preferred.unit_code,
        packages_needed(deficit, preferred.package_size),
        preferred.packages_available,
    )

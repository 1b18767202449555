"""
UnitConversionResolver -- database shell around domain/conversion.py.

Responsibility:
    Answers "how many <to_unit> is one <from_unit> of this product" from the
    product's overrides and the global conversion table, and converts
    quantities to and from the product's base unit.

Architecture position:
    Kernel > Services.  Read-only: performs lookups only, never writes.
    Used by MovementService, ReservationService and the facade.

Invariants enforced:
    - Product overrides win over global conversions (domain/conversion.py).
    - Converted quantities are quantized once, to 9 decimal places.

Failure modes:
    - ProductNotFoundError for an unknown product.
    - ConversionNotFoundError when the pair cannot be resolved directly.
"""

from decimal import Decimal
from fractions import Fraction
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_kernel.db.types import quantize_quantity, to_decimal
from inventory_kernel.domain.conversion import resolve_factor
from inventory_kernel.domain.dtos import ProductInfo
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.product import ProductUnitOverride
from inventory_kernel.models.uom import GlobalUnitConversion
from inventory_kernel.selectors.product_selector import ProductSelector

logger = get_logger("services.conversion")


class UnitConversionResolver:
    """
    Resolve conversion factors for a product.

    Contract:
        ``resolve(product, A, B)`` returns an exact Fraction f such that
        quantity_in(B) = quantity_in(A) * f.

    Non-goals:
        - No transitive (multi-hop) conversion.
        - No caching: reference data edits are visible immediately.
    """

    def __init__(self, session: Session):
        self._session = session
        self._products = ProductSelector(session)

    def _product(self, product: UUID | ProductInfo) -> ProductInfo:
        if isinstance(product, ProductInfo):
            return product
        return self._products.get(product)

    def _override_lookup(self, product_id: UUID):
        def lookup(unit_code: str) -> Decimal | None:
            return self._session.execute(
                select(ProductUnitOverride.quantity_in_base_unit).where(
                    ProductUnitOverride.product_id == product_id,
                    ProductUnitOverride.unit_code == unit_code,
                )
            ).scalar_one_or_none()

        return lookup

    def _global_lookup(self, from_unit: str, to_unit: str) -> Decimal | None:
        return self._session.execute(
            select(GlobalUnitConversion.factor).where(
                GlobalUnitConversion.from_unit_code == from_unit,
                GlobalUnitConversion.to_unit_code == to_unit,
            )
        ).scalar_one_or_none()

    def resolve(
        self,
        product: UUID | ProductInfo,
        from_unit: str,
        to_unit: str,
    ) -> Fraction:
        """Factor converting from_unit quantities of ``product`` into to_unit."""
        info = self._product(product)
        factor = resolve_factor(
            from_unit,
            to_unit,
            info.base_unit_code,
            self._override_lookup(info.product_id),
            self._global_lookup,
            product_id=info.product_id,
        )
        logger.debug(
            "conversion_resolved",
            extra={
                "product_id": str(info.product_id),
                "from_unit": from_unit,
                "to_unit": to_unit,
                "factor": factor,
            },
        )
        return factor

    def convert(
        self,
        product: UUID | ProductInfo,
        quantity: Decimal | int | str,
        from_unit: str,
        to_unit: str,
    ) -> Decimal:
        """Convert a quantity between two units of the product."""
        factor = self.resolve(product, from_unit, to_unit)
        return quantize_quantity(Fraction(to_decimal(quantity)) * factor)

    def to_base(
        self,
        product: UUID | ProductInfo,
        quantity: Decimal | int | str,
        unit_code: str,
    ) -> Decimal:
        info = self._product(product)
        return self.convert(info, quantity, unit_code, info.base_unit_code)

    def from_base(
        self,
        product: UUID | ProductInfo,
        quantity: Decimal | int | str,
        unit_code: str,
    ) -> Decimal:
        info = self._product(product)
        return self.convert(info, quantity, info.base_unit_code, unit_code)

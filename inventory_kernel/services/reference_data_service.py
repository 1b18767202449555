"""
ReferenceDataService -- units of measure, conversions, products, overrides.

Responsibility:
    Maintains the reference data the conversion resolver and the movement
    orchestrator read: the unit catalog (with its packaging flag), the
    global conversion table, the local product records and their per-unit
    overrides.

Architecture position:
    Kernel > Services.  Called by seeding/admin code and tests.

Invariants enforced:
    - Conversion factors and override quantities are strictly positive and
      finite.
    - A global conversion never links a unit to itself, and a pair is
      stored in one direction only (the reverse is derived by inversion),
      so resolve(A, B) * resolve(B, A) == 1 always holds.
    - An override never targets the product's base unit.

Failure modes:
    - UnitNotFoundError when a referenced unit does not exist.
    - DuplicateReferenceDataError on duplicate codes, pairs or SKUs.
    - InvalidConversionFactorError on bad factors.
    - ConversionNotFoundError when updating a missing conversion.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from inventory_kernel.db.types import FACTOR_DECIMAL_PLACES, to_decimal
from inventory_kernel.exceptions import (
    ConversionNotFoundError,
    DuplicateReferenceDataError,
    InvalidConversionFactorError,
    InvalidQuantityError,
    UnitNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.product import Product, ProductUnitOverride
from inventory_kernel.models.uom import (
    GlobalUnitConversion,
    UnitCategory,
    UnitOfMeasure,
    UnitSystem,
)
from inventory_kernel.selectors.product_selector import ProductSelector
from inventory_kernel.services.base import BaseService

logger = get_logger("services.reference_data")

_UNIT_FIELDS = frozenset({"name", "system", "category", "is_packaging", "is_active"})


def _factor(value: Decimal | int | str, from_unit: str, to_unit: str) -> Decimal:
    try:
        factor = to_decimal(value)
    except InvalidQuantityError:
        raise InvalidConversionFactorError(from_unit, to_unit, value) from None
    if factor <= 0:
        raise InvalidConversionFactorError(from_unit, to_unit, value)
    if factor.as_tuple().exponent < -FACTOR_DECIMAL_PLACES:
        raise InvalidConversionFactorError(
            from_unit, to_unit, value,
            f"more than {FACTOR_DECIMAL_PLACES} decimal places",
        )
    return factor


class ReferenceDataService(BaseService):
    """Create and update reference data.  Flushes; never commits."""

    # -------------------------------------------------------------------------
    # Units
    # -------------------------------------------------------------------------

    def get_unit(self, code: str) -> UnitOfMeasure:
        unit = self.session.execute(
            select(UnitOfMeasure).where(UnitOfMeasure.code == code)
        ).scalar_one_or_none()
        if unit is None:
            raise UnitNotFoundError(code)
        return unit

    def create_unit(
        self,
        code: str,
        name: str,
        category: UnitCategory | str = UnitCategory.COUNT,
        system: UnitSystem | str = UnitSystem.UNECE,
        is_packaging: bool = False,
        is_active: bool = True,
    ) -> UnitOfMeasure:
        existing = self.session.execute(
            select(UnitOfMeasure.id).where(UnitOfMeasure.code == code)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateReferenceDataError("UnitOfMeasure", code)

        unit = UnitOfMeasure(
            code=code,
            name=name,
            category=UnitCategory(category).value,
            system=UnitSystem(system).value,
            is_packaging=is_packaging,
            is_active=is_active,
        )
        self.session.add(unit)
        self.session.flush()
        logger.info(
            "unit_created",
            extra={"unit_code": code, "is_packaging": is_packaging},
        )
        return unit

    def update_unit(self, code: str, **changes) -> UnitOfMeasure:
        """Update name, system, category, is_packaging or is_active."""
        unknown = set(changes) - _UNIT_FIELDS
        if unknown:
            raise TypeError(f"Unknown unit field(s): {sorted(unknown)}")

        unit = self.get_unit(code)
        if "category" in changes:
            changes["category"] = UnitCategory(changes["category"]).value
        if "system" in changes:
            changes["system"] = UnitSystem(changes["system"]).value
        for key, value in changes.items():
            setattr(unit, key, value)
        self.session.flush()
        logger.info("unit_updated", extra={"unit_code": code, "fields": sorted(changes)})
        return unit

    # -------------------------------------------------------------------------
    # Global conversions
    # -------------------------------------------------------------------------

    def _find_conversion(self, from_unit: str, to_unit: str) -> GlobalUnitConversion | None:
        return self.session.execute(
            select(GlobalUnitConversion).where(
                GlobalUnitConversion.from_unit_code == from_unit,
                GlobalUnitConversion.to_unit_code == to_unit,
            )
        ).scalar_one_or_none()

    def create_conversion(
        self,
        from_unit: str,
        to_unit: str,
        factor: Decimal | int | str,
    ) -> GlobalUnitConversion:
        """Store ``1 from_unit = factor to_unit`` for every product."""
        if from_unit == to_unit:
            raise InvalidConversionFactorError(
                from_unit, to_unit, factor, "a unit cannot convert to itself",
            )
        value = _factor(factor, from_unit, to_unit)
        self.get_unit(from_unit)
        self.get_unit(to_unit)

        if self._find_conversion(from_unit, to_unit) is not None:
            raise DuplicateReferenceDataError("GlobalUnitConversion", f"{from_unit}->{to_unit}")
        if self._find_conversion(to_unit, from_unit) is not None:
            raise DuplicateReferenceDataError(
                "GlobalUnitConversion", f"{to_unit}->{from_unit} (reverse of {from_unit}->{to_unit})",
            )

        conversion = GlobalUnitConversion(
            from_unit_code=from_unit,
            to_unit_code=to_unit,
            factor=value,
        )
        self.session.add(conversion)
        self.session.flush()
        logger.info(
            "conversion_created",
            extra={"from_unit": from_unit, "to_unit": to_unit, "factor": value},
        )
        return conversion

    def update_conversion(
        self,
        from_unit: str,
        to_unit: str,
        factor: Decimal | int | str,
    ) -> GlobalUnitConversion:
        conversion = self._find_conversion(from_unit, to_unit)
        if conversion is None:
            raise ConversionNotFoundError(from_unit, to_unit)
        conversion.factor = _factor(factor, from_unit, to_unit)
        self.session.flush()
        logger.info(
            "conversion_updated",
            extra={"from_unit": from_unit, "to_unit": to_unit, "factor": conversion.factor},
        )
        return conversion

    # -------------------------------------------------------------------------
    # Products and overrides
    # -------------------------------------------------------------------------

    def create_product(
        self,
        organization_id: UUID,
        sku: str,
        name: str,
        base_unit_code: str,
        is_physical: bool = True,
        product_id: UUID | None = None,
    ) -> Product:
        """
        Register a product from the catalog.  ``product_id`` lets the caller
        keep the catalog's own identifier.
        """
        self.get_unit(base_unit_code)
        existing = self.session.execute(
            select(Product.id).where(
                Product.organization_id == organization_id,
                Product.sku == sku,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateReferenceDataError("Product", sku)

        product = Product(
            organization_id=organization_id,
            sku=sku,
            name=name,
            base_unit_code=base_unit_code,
            is_physical=is_physical,
        )
        if product_id is not None:
            product.id = product_id
        self.session.add(product)
        self.session.flush()
        logger.info(
            "product_registered",
            extra={"product_id": str(product.id), "sku": sku, "base_unit": base_unit_code},
        )
        return product

    def set_product_override(
        self,
        product_id: UUID,
        unit_code: str,
        quantity_in_base_unit: Decimal | int | str,
    ) -> ProductUnitOverride:
        """Create or replace ``1 unit_code = quantity_in_base_unit`` for a product."""
        product = ProductSelector(self.session).get(product_id)
        if unit_code == product.base_unit_code:
            raise InvalidConversionFactorError(
                unit_code, product.base_unit_code, quantity_in_base_unit,
                "the base unit cannot be overridden",
            )
        quantity = _factor(quantity_in_base_unit, unit_code, product.base_unit_code)
        self.get_unit(unit_code)

        override = self.session.execute(
            select(ProductUnitOverride).where(
                ProductUnitOverride.product_id == product_id,
                ProductUnitOverride.unit_code == unit_code,
            )
        ).scalar_one_or_none()
        if override is None:
            override = ProductUnitOverride(
                product_id=product_id,
                unit_code=unit_code,
                quantity_in_base_unit=quantity,
            )
            self.session.add(override)
        else:
            override.quantity_in_base_unit = quantity
        self.session.flush()

        logger.info(
            "product_override_set",
            extra={
                "product_id": str(product_id),
                "unit_code": unit_code,
                "quantity_in_base_unit": quantity,
            },
        )
        return override

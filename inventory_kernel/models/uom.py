"""
Module: inventory_kernel.models.uom
Responsibility: ORM persistence for units of measure and the global,
    product-independent conversion table.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Unit codes are unique.
    - A global conversion is directional, from_unit != to_unit, unique per
      (from_unit, to_unit), and its factor is strictly positive.
    - "Which units are packaging" is the is_packaging flag on this table:
      ordinary queryable reference data.

Failure modes:
    - IntegrityError on duplicate codes/pairs or non-positive factors.
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import TrackedBase


class UnitSystem(str, Enum):
    """Code list a unit code comes from."""

    UNECE = "UNECE"
    UCUM = "UCUM"


class UnitCategory(str, Enum):
    """Physical dimension measured by a unit."""

    COUNT = "count"
    MASS = "mass"
    VOLUME = "volume"
    LENGTH = "length"
    AREA = "area"
    TIME = "time"
    OTHER = "other"


class UnitOfMeasure(TrackedBase):
    """A unit of measure (EA, KGM, CS, PLT, ...)."""

    __tablename__ = "units_of_measure"

    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    system: Mapped[UnitSystem] = mapped_column(
        String(10),
        default=UnitSystem.UNECE,
        nullable=False,
    )

    category: Mapped[UnitCategory] = mapped_column(
        String(10),
        default=UnitCategory.COUNT,
        nullable=False,
    )

    # Physical container (case, pallet, pack) rather than a loose item
    is_packaging: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<UnitOfMeasure {self.code}>"


class GlobalUnitConversion(TrackedBase):
    """qty(to_unit) = qty(from_unit) * factor, for every product."""

    __tablename__ = "unit_conversions"

    __table_args__ = (
        UniqueConstraint("from_unit_code", "to_unit_code", name="uq_unit_conversion_pair"),
        CheckConstraint("from_unit_code <> to_unit_code", name="ck_unit_conversion_distinct"),
        CheckConstraint("factor > 0", name="ck_unit_conversion_positive"),
    )

    from_unit_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("units_of_measure.code"),
        nullable=False,
    )

    to_unit_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("units_of_measure.code"),
        nullable=False,
    )

    factor: Mapped[Decimal] = mapped_column(Numeric(28, 12), nullable=False)

    def __repr__(self) -> str:
        return f"<GlobalUnitConversion 1 {self.from_unit_code} = {self.factor} {self.to_unit_code}>"

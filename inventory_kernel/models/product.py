"""
Module: inventory_kernel.models.product
Responsibility: The slice of catalog data the inventory kernel needs to
    validate movements (organization, base unit, physical flag) and the
    per-product unit overrides.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - A product has exactly one base unit.
    - An override is unique per (product, unit) and its quantity in base
      unit is strictly positive.
    - An override never targets the product's own base unit (enforced by
      ReferenceDataService; the base unit converts to itself with factor 1).
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import TrackedBase, UUIDString


class Product(TrackedBase):
    """A stockable (or service) product owned by one organization."""

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("organization_id", "sku", name="uq_product_org_sku"),
        Index("idx_product_org", "organization_id"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    sku: Mapped[str] = mapped_column(String(100), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    base_unit_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("units_of_measure.code"),
        nullable=False,
    )

    # Services and other non-physical products never touch the ledger
    is_physical: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    unit_overrides: Mapped[list["ProductUnitOverride"]] = relationship(
        back_populates="product",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku} base={self.base_unit_code}>"


class ProductUnitOverride(TrackedBase):
    """1 unit_code of this product = quantity_in_base_unit base units."""

    __tablename__ = "product_unit_overrides"

    __table_args__ = (
        UniqueConstraint("product_id", "unit_code", name="uq_product_unit_override"),
        CheckConstraint("quantity_in_base_unit > 0", name="ck_product_unit_override_positive"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    unit_code: Mapped[str] = mapped_column(
        String(20),
        ForeignKey("units_of_measure.code"),
        nullable=False,
    )

    quantity_in_base_unit: Mapped[Decimal] = mapped_column(Numeric(28, 12), nullable=False)

    product: Mapped[Product] = relationship(back_populates="unit_overrides")

    def __repr__(self) -> str:
        return f"<ProductUnitOverride 1 {self.unit_code} = {self.quantity_in_base_unit}>"

"""
Module: inventory_kernel.selectors.product_selector
Responsibility: Organization-scoped product lookups used to validate every
    stock movement (existence, tenancy, physical flag, base unit).
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from inventory_kernel.domain.dtos import ProductInfo
from inventory_kernel.exceptions import ProductNotFoundError, ProductNotPhysicalError
from inventory_kernel.models.product import Product
from inventory_kernel.selectors.base import BaseSelector


class ProductSelector(BaseSelector):
    """Read-only access to products."""

    def find(self, product_id: UUID, organization_id: UUID | None = None) -> ProductInfo | None:
        stmt = select(Product).where(Product.id == product_id)
        if organization_id is not None:
            stmt = stmt.where(Product.organization_id == organization_id)
        product = self.session.execute(stmt).scalar_one_or_none()
        if product is None:
            return None
        return ProductInfo(
            product_id=product.id,
            organization_id=product.organization_id,
            sku=product.sku,
            base_unit_code=product.base_unit_code,
            is_physical=product.is_physical,
            is_active=product.is_active,
        )

    def get(self, product_id: UUID, organization_id: UUID | None = None) -> ProductInfo:
        """
        Load a product, scoped to the organization when one is given.

        Raises:
            ProductNotFoundError: no such product in the organization.
        """
        product = self.find(product_id, organization_id)
        if product is None:
            raise ProductNotFoundError(product_id, organization_id)
        return product

    def get_physical(self, product_id: UUID, organization_id: UUID) -> ProductInfo:
        """
        Load a product that may carry stock.

        Raises:
            ProductNotFoundError: no such product in the organization.
            ProductNotPhysicalError: the product is a service or similar.
        """
        product = self.get(product_id, organization_id)
        if not product.is_physical:
            raise ProductNotPhysicalError(product_id)
        return product

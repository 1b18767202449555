"""
Module: inventory_kernel.models.stock_lock
Responsibility: Lock rows serializing check-then-act stock mutations.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per (organization, product, scope_key).  scope_key is the
      warehouse id, or "*" for the organization-wide scope.
    - Rows carry no data; they exist to be locked with SELECT ... FOR UPDATE.
"""

from uuid import UUID

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base, UUIDString

ALL_WAREHOUSES_SCOPE = "*"


class StockLock(Base):
    """Lockable anchor row for one stock scope."""

    __tablename__ = "inventory_stock_locks"

    __table_args__ = (
        UniqueConstraint(
            "organization_id", "product_id", "scope_key", name="uq_stock_lock_scope",
        ),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    scope_key: Mapped[str] = mapped_column(String(36), nullable=False)

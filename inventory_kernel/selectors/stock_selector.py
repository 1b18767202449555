"""
Module: inventory_kernel.selectors.stock_selector
Responsibility: Derives stock levels by folding inventory ledger rows.  There
    are NO stored balances; every figure is recomputed from the ledger.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - on_hand = sum(receipt, adjustment_pos, disassembly_in)
              - sum(issue, adjustment_neg, disassembly_out)
      over loose (non-packaged) entries in scope.
    - Packaged stock is folded the same way over packaged entries.
    - Omitting warehouse_id aggregates across all warehouses of the
      organization, including entries without a warehouse.

Failure modes:
    - ProductNotFoundError if the product is not in the organization.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select

from inventory_kernel.db.types import quantize_quantity
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import LedgerEntryInfo, StockSnapshot
from inventory_kernel.domain.movement import MovementType, fold_movements
from inventory_kernel.models.ledger import LedgerEntry
from inventory_kernel.models.reservation import Reservation
from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.product_selector import ProductSelector


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return quantize_quantity(value)


class StockSelector(BaseSelector):
    """
    Stock aggregation over the inventory ledger.

    Non-goals:
        - Does NOT lock anything.  Callers that act on the result take the
          stock scope lock first (StockLockService).
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._products = ProductSelector(session)

    def _ledger_scope(self, stmt, organization_id: UUID, product_id: UUID, warehouse_id: UUID | None):
        stmt = stmt.where(
            LedgerEntry.organization_id == organization_id,
            LedgerEntry.product_id == product_id,
        )
        if warehouse_id is not None:
            stmt = stmt.where(LedgerEntry.warehouse_id == warehouse_id)
        return stmt

    def current_stock(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
    ) -> StockSnapshot:
        """
        Fold the ledger for one product (and optionally one warehouse).

        Postconditions: Returns a StockSnapshot in the product's base unit.
        """
        product = self._products.get(product_id, organization_id)

        stmt = self._ledger_scope(
            select(
                LedgerEntry.movement_type,
                LedgerEntry.is_packaged,
                func.sum(LedgerEntry.quantity_in_base),
            ),
            organization_id, product_id, warehouse_id,
        ).group_by(LedgerEntry.movement_type, LedgerEntry.is_packaged)

        loose: list[tuple[MovementType, Decimal]] = []
        packaged: list[tuple[MovementType, Decimal]] = []
        by_type: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))

        for movement_type, is_packaged, total in self.session.execute(stmt):
            movement = MovementType(movement_type)
            quantity = _as_decimal(total)
            (packaged if is_packaged else loose).append((movement, quantity))
            by_type[movement.value] += quantity

        return StockSnapshot(
            organization_id=organization_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
            unit_code=product.base_unit_code,
            on_hand=quantize_quantity(fold_movements(loose)),
            packaged=quantize_quantity(fold_movements(packaged)),
            by_movement_type=dict(by_type),
        )

    def on_hand_by_warehouse(
        self,
        organization_id: UUID,
        product_id: UUID,
    ) -> dict[UUID | None, Decimal]:
        """
        Loose on-hand stock per warehouse.  Entries booked without a
        warehouse are reported under the None key.  The values sum to
        current_stock(...).on_hand for the whole organization.
        """
        stmt = self._ledger_scope(
            select(
                LedgerEntry.warehouse_id,
                LedgerEntry.movement_type,
                func.sum(LedgerEntry.quantity_in_base),
            ).where(LedgerEntry.is_packaged.is_(False)),
            organization_id, product_id, None,
        ).group_by(LedgerEntry.warehouse_id, LedgerEntry.movement_type)

        movements: dict[UUID | None, list[tuple[MovementType, Decimal]]] = defaultdict(list)
        for warehouse_id, movement_type, total in self.session.execute(stmt):
            movements[warehouse_id].append((MovementType(movement_type), _as_decimal(total)))
        return {
            warehouse_id: quantize_quantity(fold_movements(entries))
            for warehouse_id, entries in movements.items()
        }

    def reserved_quantity(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
        as_of: datetime | None = None,
    ) -> Decimal:
        """Sum of active (unreleased, unexpired) reservations in scope."""
        now = as_of or self._clock.now()
        stmt = select(func.sum(Reservation.quantity_in_base)).where(
            Reservation.organization_id == organization_id,
            Reservation.product_id == product_id,
            Reservation.released_at.is_(None),
            or_(Reservation.expires_at.is_(None), Reservation.expires_at > now),
        )
        if warehouse_id is not None:
            stmt = stmt.where(Reservation.warehouse_id == warehouse_id)
        return _as_decimal(self.session.execute(stmt).scalar())

    def available_stock(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
    ) -> Decimal:
        """Loose on-hand stock not yet held by an active reservation."""
        snapshot = self.current_stock(organization_id, product_id, warehouse_id)
        return snapshot.on_hand - self.reserved_quantity(
            organization_id, product_id, warehouse_id,
        )

    def history(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[LedgerEntryInfo]:
        """Ledger entries in scope, oldest first."""
        stmt = self._ledger_scope(
            select(LedgerEntry), organization_id, product_id, warehouse_id,
        ).order_by(LedgerEntry.occurred_at, LedgerEntry.recorded_at, LedgerEntry.line_seq)
        if limit is not None:
            stmt = stmt.limit(limit)

        return [
            LedgerEntryInfo(
                entry_id=entry.id,
                occurred_at=entry.occurred_at,
                movement_type=MovementType(entry.movement_type),
                quantity_in_base=entry.quantity_in_base,
                signed_quantity=entry.signed_quantity,
                unit_code=entry.unit_code,
                quantity_in_entered_unit=entry.quantity_in_entered_unit,
                warehouse_id=entry.warehouse_id,
                is_packaged=entry.is_packaged,
                note=entry.note,
            )
            for entry in self.session.execute(stmt).scalars()
        ]

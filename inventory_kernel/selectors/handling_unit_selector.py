"""
Module: inventory_kernel.selectors.handling_unit_selector
Responsibility: Read models for handling units (by id, by product) with the
    receipt/unpack history of each.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Lookups are scoped to the organization; another tenant's unit is
      reported as not found.
    - History is returned oldest first, in the order it was recorded.
"""

from collections import defaultdict
from uuid import UUID

from sqlalchemy import case, select

from inventory_kernel.domain.dtos import HandlingUnitEventInfo, HandlingUnitInfo
from inventory_kernel.exceptions import HandlingUnitNotFoundError
from inventory_kernel.models.handling_unit import (
    HandlingUnit,
    HandlingUnitEvent,
    HandlingUnitEventType,
)
from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.product_selector import ProductSelector


class HandlingUnitSelector(BaseSelector):
    """Read-only handling unit queries."""

    def _history(self, unit_ids: list[UUID]) -> dict[UUID, list[HandlingUnitEventInfo]]:
        history: dict[UUID, list[HandlingUnitEventInfo]] = defaultdict(list)
        if not unit_ids:
            return history
        events = self.session.execute(
            select(HandlingUnitEvent)
            .where(HandlingUnitEvent.handling_unit_id.in_(unit_ids))
            .order_by(
                HandlingUnitEvent.occurred_at,
                # receipt before unpacking at equal timestamps
                case((HandlingUnitEvent.event_type == HandlingUnitEventType.RECEIVED.value, 0), else_=1),
                HandlingUnitEvent.recorded_at,
            )
        ).scalars()
        for event in events:
            history[event.handling_unit_id].append(
                HandlingUnitEventInfo(
                    event_type=event.event_type,
                    occurred_at=event.occurred_at,
                    warehouse_id=event.warehouse_id,
                    source_doc_type=event.source_doc_type,
                    source_doc_id=event.source_doc_id,
                    note=event.note,
                )
            )
        return history

    def _to_infos(self, units) -> list[HandlingUnitInfo]:
        units = list(units)
        history = self._history([u.id for u in units])
        return [
            HandlingUnitInfo(
                handling_unit_id=unit.id,
                organization_id=unit.organization_id,
                product_id=unit.product_id,
                unit_code=unit.unit_code,
                warehouse_id=unit.warehouse_id,
                code=unit.code,
                quantity_in_base=unit.quantity_in_base,
                created_at=unit.created_at,
                unpacked_at=unit.unpacked_at,
                history=tuple(history.get(unit.id, ())),
            )
            for unit in units
        ]

    def get(self, organization_id: UUID, handling_unit_id: UUID) -> HandlingUnitInfo:
        """
        Raises:
            HandlingUnitNotFoundError: unknown id or other organization.
        """
        unit = self.session.execute(
            select(HandlingUnit).where(
                HandlingUnit.id == handling_unit_id,
                HandlingUnit.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if unit is None:
            raise HandlingUnitNotFoundError(handling_unit_id)
        return self._to_infos([unit])[0]

    def list_for_product(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
        intact_only: bool = False,
    ) -> list[HandlingUnitInfo]:
        """
        Handling units of a product, oldest first (the order auto-unpack
        opens them in).

        Raises:
            ProductNotFoundError: unknown product or other organization.
        """
        ProductSelector(self.session).get(product_id, organization_id)
        stmt = select(HandlingUnit).where(
            HandlingUnit.organization_id == organization_id,
            HandlingUnit.product_id == product_id,
        )
        if warehouse_id is not None:
            stmt = stmt.where(HandlingUnit.warehouse_id == warehouse_id)
        if intact_only:
            stmt = stmt.where(HandlingUnit.unpacked_at.is_(None))
        units = self.session.execute(
            stmt.order_by(HandlingUnit.created_at, HandlingUnit.id)
        ).scalars()
        return self._to_infos(units)

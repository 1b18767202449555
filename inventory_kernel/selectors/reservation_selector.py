"""
Module: inventory_kernel.selectors.reservation_selector
Responsibility: Read models for reservations (by id, active, by reference,
    by product).
Architecture position: Kernel > Selectors.

Invariants enforced:
    - "Active" means not released and (no deadline or deadline in the
      future).  A reservation past its deadline that the sweeper has not
      reached yet is reported as expired, never as active.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import ReservationInfo
from inventory_kernel.exceptions import ReservationNotFoundError
from inventory_kernel.models.reservation import Reservation, ReservationType
from inventory_kernel.selectors.base import BaseSelector


class ReservationSelector(BaseSelector):
    """Read-only reservation queries."""

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _to_info(self, reservation: Reservation, now: datetime) -> ReservationInfo:
        return ReservationInfo(
            reservation_id=reservation.id,
            organization_id=reservation.organization_id,
            product_id=reservation.product_id,
            warehouse_id=reservation.warehouse_id,
            batch_id=reservation.batch_id,
            handling_unit_id=reservation.handling_unit_id,
            reservation_type=ReservationType(reservation.reservation_type).value,
            quantity_in_base=reservation.quantity_in_base,
            unit_code=reservation.unit_code,
            reference_type=reservation.reference_type,
            reference_id=reservation.reference_id,
            notes=reservation.notes,
            created_at=reservation.created_at,
            expires_at=reservation.expires_at,
            released_at=reservation.released_at,
            release_reason=reservation.release_reason,
            status=reservation.status_at(now).value,
        )

    def _list(self, stmt) -> list[ReservationInfo]:
        now = self._clock.now()
        return [self._to_info(r, now) for r in self.session.execute(stmt).scalars()]

    def get(self, organization_id: UUID, reservation_id: UUID) -> ReservationInfo:
        """
        Raises:
            ReservationNotFoundError: unknown id or other organization.
        """
        reservation = self.session.execute(
            select(Reservation).where(
                Reservation.id == reservation_id,
                Reservation.organization_id == organization_id,
            )
        ).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return self._to_info(reservation, self._clock.now())

    def list_active(
        self,
        organization_id: UUID,
        product_id: UUID | None = None,
    ) -> list[ReservationInfo]:
        now = self._clock.now()
        stmt = select(Reservation).where(
            Reservation.organization_id == organization_id,
            Reservation.released_at.is_(None),
            or_(Reservation.expires_at.is_(None), Reservation.expires_at > now),
        )
        if product_id is not None:
            stmt = stmt.where(Reservation.product_id == product_id)
        return self._list(stmt.order_by(Reservation.created_at))

    def list_by_reference(
        self,
        organization_id: UUID,
        reference_type: str,
        reference_id: str,
    ) -> list[ReservationInfo]:
        return self._list(
            select(Reservation)
            .where(
                Reservation.organization_id == organization_id,
                Reservation.reference_type == reference_type,
                Reservation.reference_id == str(reference_id),
            )
            .order_by(Reservation.created_at)
        )

    def list_by_product(
        self,
        organization_id: UUID,
        product_id: UUID,
    ) -> list[ReservationInfo]:
        """All reservations of a product, newest first."""
        return self._list(
            select(Reservation)
            .where(
                Reservation.organization_id == organization_id,
                Reservation.product_id == product_id,
            )
            .order_by(Reservation.created_at.desc())
        )

"""
ReservationService -- create / release / extend stock holds.

Responsibility:
    Manages reservations: holds of base-unit stock for a referenced document
    line (an order line, a transfer).  Reservations never touch the ledger.

Architecture position:
    Kernel > Services.  Reads through ReservationSelector / StockSelector.
    The expiry sweeper (inventory_batch) releases expired holds in bulk with
    the same conditional-update predicate used by release().

Invariants enforced:
    - State machine: active -> released (terminal), active -> active via
      extend.  A reservation past its deadline is treated as released even
      before the sweeper reaches it.
    - release() is idempotent: it is a single UPDATE guarded by
      ``released_at IS NULL``, so a concurrent releaser or sweeper wins at
      most once and later calls are no-ops that leave released_at as is.
    - Hard reservations are checked against available stock (on-hand minus
      active holds) under the stock scope lock.

Failure modes:
    - ProductNotFoundError, ReservationNotFoundError,
      HandlingUnitNotFoundError.
    - InvalidReservationError on bad quantity or deadline.
    - InvalidReservationTransitionError when extending a released or
      expired reservation.
    - InsufficientStockError for hard reservations beyond available stock.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update

from inventory_kernel.db.types import quantize_quantity, to_decimal
from inventory_kernel.domain.clock import Clock, SystemClock, as_utc
from inventory_kernel.domain.dtos import ReservationInfo
from inventory_kernel.exceptions import (
    HandlingUnitNotFoundError,
    InsufficientStockError,
    InvalidReservationError,
    InvalidReservationTransitionError,
    ReservationNotFoundError,
)
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.handling_unit import HandlingUnit
from inventory_kernel.models.reservation import (
    Reservation,
    ReservationStatus,
    ReservationType,
)
from inventory_kernel.selectors.product_selector import ProductSelector
from inventory_kernel.selectors.reservation_selector import ReservationSelector
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.base import BaseService
from inventory_kernel.services.conversion_resolver import UnitConversionResolver
from inventory_kernel.services.stock_lock_service import StockLockService

logger = get_logger("services.reservation")

DEFAULT_RELEASE_REASON = "released"


class ReservationService(BaseService):
    """
    Reservation lifecycle.

    Guarantees:
        - Flushes; never commits.
        - Never deletes a reservation.
    """

    def __init__(self, session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._products = ProductSelector(session)
        self._resolver = UnitConversionResolver(session)
        self._stock = StockSelector(session, self._clock)
        self._locks = StockLockService(session)
        self.selector = ReservationSelector(session, self._clock)

    def _load(self, organization_id: UUID, reservation_id: UUID, lock: bool = False) -> Reservation:
        stmt = select(Reservation).where(
            Reservation.id == reservation_id,
            Reservation.organization_id == organization_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        reservation = self.session.execute(stmt).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    def create_reservation(
        self,
        organization_id: UUID,
        product_id: UUID,
        quantity_in_base: Decimal | int | str,
        reference_type: str,
        reference_id: str | UUID,
        warehouse_id: UUID | None = None,
        batch_id: UUID | None = None,
        handling_unit_id: UUID | None = None,
        unit_code: str | None = None,
        expires_at: datetime | None = None,
        reservation_type: ReservationType | str = ReservationType.SOFT,
        notes: str | None = None,
    ) -> ReservationInfo:
        """
        Place a hold.

        ``unit_code`` records the unit the hold was requested in; it must be
        convertible to the product's base unit.  ``expires_at=None`` is a
        permanent hold that only an explicit release ends.
        """
        reservation_type = ReservationType(reservation_type)
        product = self._products.get(product_id, organization_id)

        quantity = quantize_quantity(to_decimal(quantity_in_base))
        if quantity <= 0:
            raise InvalidReservationError(f"quantity must be greater than zero, got {quantity_in_base}")
        if not reference_type or not str(reference_id):
            raise InvalidReservationError("reference_type and reference_id are required")

        now = self._clock.now()
        if expires_at is not None:
            expires_at = as_utc(expires_at)
            if expires_at <= now:
                raise InvalidReservationError("expires_at must be in the future")

        if unit_code is not None:
            self._resolver.resolve(product, unit_code, product.base_unit_code)

        if handling_unit_id is not None:
            found = self.session.execute(
                select(HandlingUnit.id).where(
                    HandlingUnit.id == handling_unit_id,
                    HandlingUnit.organization_id == organization_id,
                    HandlingUnit.product_id == product_id,
                )
            ).scalar_one_or_none()
            if found is None:
                raise HandlingUnitNotFoundError(handling_unit_id)

        if reservation_type is ReservationType.HARD:
            self._locks.lock_scope(organization_id, product_id, warehouse_id)
            available = self._stock.available_stock(organization_id, product_id, warehouse_id)
            if available < quantity:
                raise InsufficientStockError(product_id, quantity, available, warehouse_id)

        reservation = Reservation(
            organization_id=organization_id,
            product_id=product_id,
            warehouse_id=warehouse_id,
            batch_id=batch_id,
            handling_unit_id=handling_unit_id,
            reservation_type=reservation_type.value,
            quantity_in_base=quantity,
            unit_code=unit_code,
            reference_type=reference_type,
            reference_id=str(reference_id),
            notes=notes,
            created_at=now,
            expires_at=expires_at,
        )
        self.session.add(reservation)
        self.session.flush()

        logger.info(
            "reservation_created",
            extra={
                "reservation_id": str(reservation.id),
                "product_id": str(product_id),
                "reservation_type": reservation_type.value,
                "quantity_in_base": quantity,
                "reference_type": reference_type,
                "reference_id": str(reference_id),
                "expires_at": expires_at,
            },
        )
        return self.selector.get(organization_id, reservation.id)

    def release_reservation(
        self,
        organization_id: UUID,
        reservation_id: UUID,
        reason: str = DEFAULT_RELEASE_REASON,
    ) -> ReservationInfo:
        """
        Release a hold.  Releasing an already-released reservation returns
        it unchanged.
        """
        reservation = self._load(organization_id, reservation_id)
        now = self._clock.now()

        result = self.session.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.organization_id == organization_id,
                Reservation.released_at.is_(None),
            )
            .values(released_at=now, release_reason=reason)
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(reservation)

        if result.rowcount:
            logger.info(
                "reservation_released",
                extra={"reservation_id": str(reservation_id), "reason": reason},
            )
        else:
            logger.debug(
                "reservation_release_noop",
                extra={
                    "reservation_id": str(reservation_id),
                    "released_at": reservation.released_at,
                },
            )
        return self.selector.get(organization_id, reservation_id)

    def extend_reservation(
        self,
        organization_id: UUID,
        reservation_id: UUID,
        expires_at: datetime,
    ) -> ReservationInfo:
        """Move an active reservation's deadline to a later (future) time."""
        reservation = self._load(organization_id, reservation_id, lock=True)
        now = self._clock.now()

        status = reservation.status_at(now)
        if status is not ReservationStatus.ACTIVE:
            raise InvalidReservationTransitionError(reservation_id, status.value, "extend")

        expires_at = as_utc(expires_at)
        if expires_at <= now:
            raise InvalidReservationError("expires_at must be in the future")

        previous = reservation.expires_at
        reservation.expires_at = expires_at
        self.session.flush()

        logger.info(
            "reservation_extended",
            extra={
                "reservation_id": str(reservation_id),
                "previous_expires_at": previous,
                "expires_at": expires_at,
            },
        )
        return self.selector.get(organization_id, reservation_id)

"""
InventoryFacade -- one transaction per inventory request.

Responsibility:
    The surface higher-level order and document logic calls.  Each method
    opens a session, runs one kernel service call, and commits; on a
    serialization failure or deadlock the whole transaction is retried.

Architecture position:
    Services layer (outside the kernel).  Composes MovementService,
    ReservationService, StockSelector, UnitConversionResolver and the
    expiry sweeper.  The kernel never imports from here.

Invariants enforced:
    - Commit happens here and only here (session_scope).
    - Typed kernel errors are never retried; only database conflicts are.
    - Every call runs under a fresh correlation_id in LogContext.

Failure modes:
    - Any InventoryKernelError propagates unchanged after rollback.
    - TransactionConflictError once max_transaction_retries re-runs after
      the first attempt have all conflicted.
"""

import time
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from inventory_batch.tasks.reservation_expiry import ReservationExpirySweeper, SweepResult
from inventory_config.settings import InventorySettings
from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.dtos import (
    HandlingUnitInfo,
    LedgerEntryInfo,
    ReservationInfo,
    SaleLine,
)
from inventory_kernel.domain.movement import AdjustmentDirection
from inventory_kernel.exceptions import TransactionConflictError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.reservation import ReservationType
from inventory_kernel.selectors.handling_unit_selector import HandlingUnitSelector
from inventory_kernel.selectors.stock_selector import StockSelector
from inventory_kernel.services.conversion_resolver import UnitConversionResolver
from inventory_kernel.services.movement_service import (
    AdjustmentResult,
    MovementService,
    PackageReceiptResult,
    ReceiveResult,
    SaleResult,
)
from inventory_kernel.services.reservation_service import ReservationService

logger = get_logger("services.facade")

T = TypeVar("T")

# serialization_failure, deadlock_detected
_RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})
_RETRY_BACKOFF_SECONDS = 0.05


def is_transaction_conflict(exc: DBAPIError) -> bool:
    """True for errors that a plain re-run of the transaction can fix."""
    if getattr(exc.orig, "pgcode", None) in _RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(exc.orig).lower()


@dataclass(frozen=True)
class StockLevel:
    """
    Stock of a product in one scope.

    total_qty is loose, sellable stock; packaged_qty is stock still sealed in
    handling units.  Both are expressed in ``unit_code``.
    """

    organization_id: UUID
    product_id: UUID
    warehouse_id: UUID | None
    unit_code: str
    total_qty: Decimal
    packaged_qty: Decimal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class InventoryFacade:
    """
    Transactional entry points.

    Contract:
        Every public method is atomic: it either commits all of its writes
        or none.

    Non-goals:
        - No authentication or tenancy enforcement; organization_id is
          trusted as given.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        settings: InventorySettings | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or InventorySettings()

    # -------------------------------------------------------------------------
    # Transaction runner
    # -------------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[Session], T],
        organization_id: UUID | None = None,
        product_id: UUID | None = None,
    ) -> T:
        max_attempts = self._settings.max_transaction_retries + 1
        with LogContext.bind(
            correlation_id=uuid4(),
            organization_id=organization_id,
            product_id=product_id,
        ):
            t0 = time.monotonic()
            attempt = 1
            while True:
                try:
                    with session_scope(self._session_factory) as session:
                        result = work(session)
                    break
                except DBAPIError as exc:
                    if not is_transaction_conflict(exc):
                        raise
                    if attempt >= max_attempts:
                        logger.error(
                            "transaction_conflict_exhausted",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise TransactionConflictError(operation, attempt) from exc
                    logger.warning(
                        "transaction_conflict_retry",
                        extra={"operation": operation, "attempt": attempt},
                    )
                    time.sleep(_RETRY_BACKOFF_SECONDS * attempt)
                    attempt += 1

            logger.debug(
                "facade_call_completed",
                extra={
                    "operation": operation,
                    "attempts": attempt,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return result

    def _movements(self, session: Session) -> MovementService:
        return MovementService(
            session,
            self._clock,
            allow_negative_stock=self._settings.allow_negative_stock,
            default_currency=self._settings.default_currency,
        )

    def _reservations(self, session: Session) -> ReservationService:
        return ReservationService(session, self._clock)

    # -------------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------------

    def receive(
        self,
        organization_id: UUID,
        product_id: UUID,
        quantity: Decimal | int | str,
        unit_code: str,
        warehouse_id: UUID | None = None,
        unit_cost: Decimal | str | None = None,
        currency: str | None = None,
        **kwargs: Any,
    ) -> ReceiveResult:
        return self._run(
            "receive",
            lambda s: self._movements(s).receive(
                organization_id, product_id, quantity, unit_code,
                warehouse_id=warehouse_id, unit_cost=unit_cost, currency=currency,
                **kwargs,
            ),
            organization_id,
            product_id,
        )

    def receive_packages(
        self,
        organization_id: UUID,
        product_id: UUID,
        unit_code: str,
        packages: int,
        warehouse_id: UUID | None = None,
        unit_cost: Decimal | str | None = None,
        currency: str | None = None,
        **kwargs: Any,
    ) -> PackageReceiptResult:
        return self._run(
            "receive_packages",
            lambda s: self._movements(s).receive_packages(
                organization_id, product_id, unit_code, packages,
                warehouse_id=warehouse_id, unit_cost=unit_cost, currency=currency,
                **kwargs,
            ),
            organization_id,
            product_id,
        )

    def sell(
        self,
        organization_id: UUID,
        product_id: UUID,
        lines: Sequence[SaleLine | tuple[Decimal | int | str, str]],
        warehouse_id: UUID | None = None,
        return_remaining: bool = False,
        **kwargs: Any,
    ) -> SaleResult:
        """``lines`` accepts SaleLine or ``(quantity, unit_code)`` pairs."""
        sale_lines = [
            line if isinstance(line, SaleLine) else SaleLine(quantity=line[0], unit_code=line[1])
            for line in lines
        ]
        return self._run(
            "sell",
            lambda s: self._movements(s).sell(
                organization_id, product_id, sale_lines,
                warehouse_id=warehouse_id, return_remaining=return_remaining,
                **kwargs,
            ),
            organization_id,
            product_id,
        )

    def adjust(
        self,
        organization_id: UUID,
        warehouse_id: UUID | None,
        product_id: UUID,
        quantity: Decimal | int | str,
        unit_code: str,
        direction: AdjustmentDirection | str,
        reason: str,
        notes: str | None = None,
        physical_count_id: UUID | None = None,
    ) -> AdjustmentResult:
        return self._run(
            "adjust",
            lambda s: self._movements(s).adjust(
                organization_id, warehouse_id, product_id, quantity, unit_code,
                direction, reason, notes=notes, physical_count_id=physical_count_id,
            ),
            organization_id,
            product_id,
        )

    # -------------------------------------------------------------------------
    # Stock queries
    # -------------------------------------------------------------------------

    def current_stock(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
        unit_code: str | None = None,
    ) -> StockLevel:
        """Stock in the base unit, or converted to ``unit_code`` when given."""

        def work(session: Session) -> StockLevel:
            snapshot = StockSelector(session, self._clock).current_stock(
                organization_id, product_id, warehouse_id,
            )
            total, packaged, unit = snapshot.on_hand, snapshot.packaged, snapshot.unit_code
            if unit_code is not None and unit_code != snapshot.unit_code:
                resolver = UnitConversionResolver(session)
                total = resolver.from_base(product_id, total, unit_code)
                packaged = resolver.from_base(product_id, packaged, unit_code)
                unit = unit_code
            return StockLevel(
                organization_id=organization_id,
                product_id=product_id,
                warehouse_id=warehouse_id,
                unit_code=unit,
                total_qty=total,
                packaged_qty=packaged,
            )

        return self._run("current_stock", work, organization_id, product_id)

    def available_stock(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
    ) -> Decimal:
        """Loose stock minus active reservations, in the base unit."""
        return self._run(
            "available_stock",
            lambda s: StockSelector(s, self._clock).available_stock(
                organization_id, product_id, warehouse_id,
            ),
            organization_id,
            product_id,
        )

    def ledger_history(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
        limit: int | None = None,
    ) -> list[LedgerEntryInfo]:
        return self._run(
            "ledger_history",
            lambda s: StockSelector(s, self._clock).history(
                organization_id, product_id, warehouse_id, limit,
            ),
            organization_id,
            product_id,
        )

    # -------------------------------------------------------------------------
    # Handling units
    # -------------------------------------------------------------------------

    def get_handling_unit(self, organization_id: UUID, handling_unit_id: UUID) -> HandlingUnitInfo:
        return self._run(
            "get_handling_unit",
            lambda s: HandlingUnitSelector(s).get(organization_id, handling_unit_id),
            organization_id,
        )

    def list_handling_units(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
        intact_only: bool = False,
    ) -> list[HandlingUnitInfo]:
        return self._run(
            "list_handling_units",
            lambda s: HandlingUnitSelector(s).list_for_product(
                organization_id, product_id, warehouse_id, intact_only,
            ),
            organization_id,
            product_id,
        )

    # -------------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------------

    def create_reservation(
        self,
        organization_id: UUID,
        product_id: UUID,
        quantity_in_base: Decimal | int | str,
        reference_type: str,
        reference_id: str | UUID,
        warehouse_id: UUID | None = None,
        expires_at: datetime | None = None,
        reservation_type: ReservationType | str = ReservationType.SOFT,
        **kwargs: Any,
    ) -> ReservationInfo:
        return self._run(
            "create_reservation",
            lambda s: self._reservations(s).create_reservation(
                organization_id, product_id, quantity_in_base,
                reference_type, reference_id,
                warehouse_id=warehouse_id, expires_at=expires_at,
                reservation_type=reservation_type, **kwargs,
            ),
            organization_id,
            product_id,
        )

    def release_reservation(
        self,
        organization_id: UUID,
        reservation_id: UUID,
        reason: str = "released",
    ) -> ReservationInfo:
        return self._run(
            "release_reservation",
            lambda s: self._reservations(s).release_reservation(
                organization_id, reservation_id, reason,
            ),
            organization_id,
        )

    def extend_reservation(
        self,
        organization_id: UUID,
        reservation_id: UUID,
        expires_at: datetime,
    ) -> ReservationInfo:
        return self._run(
            "extend_reservation",
            lambda s: self._reservations(s).extend_reservation(
                organization_id, reservation_id, expires_at,
            ),
            organization_id,
        )

    def get_reservation(self, organization_id: UUID, reservation_id: UUID) -> ReservationInfo:
        return self._run(
            "get_reservation",
            lambda s: self._reservations(s).selector.get(organization_id, reservation_id),
            organization_id,
        )

    def list_active_reservations(
        self,
        organization_id: UUID,
        product_id: UUID | None = None,
    ) -> list[ReservationInfo]:
        return self._run(
            "list_active_reservations",
            lambda s: self._reservations(s).selector.list_active(organization_id, product_id),
            organization_id,
            product_id,
        )

    def list_reservations_by_reference(
        self,
        organization_id: UUID,
        reference_type: str,
        reference_id: str | UUID,
    ) -> list[ReservationInfo]:
        return self._run(
            "list_reservations_by_reference",
            lambda s: self._reservations(s).selector.list_by_reference(
                organization_id, reference_type, str(reference_id),
            ),
            organization_id,
        )

    def list_reservations_by_product(
        self,
        organization_id: UUID,
        product_id: UUID,
    ) -> list[ReservationInfo]:
        return self._run(
            "list_reservations_by_product",
            lambda s: self._reservations(s).selector.list_by_product(organization_id, product_id),
            organization_id,
            product_id,
        )

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def sweep_expired_reservations(self, organization_id: UUID | None = None) -> SweepResult:
        """Run the expiry sweep now.  The sweeper manages its own transactions."""
        sweeper = ReservationExpirySweeper(
            self._session_factory,
            self._clock,
            batch_size=self._settings.sweep.batch_size,
        )
        with LogContext.bind(correlation_id=uuid4()):
            return sweeper.sweep(organization_id)

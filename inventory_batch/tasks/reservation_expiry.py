"""
ReservationExpirySweeper -- releases reservations whose deadline has passed.

Contract:
    ``sweep()`` finds every unreleased reservation with
    ``expires_at <= now`` and marks it released with reason "expired".

Architecture: inventory_batch/tasks.  Owns its transactions: one
    ``session_scope`` for the candidate scan and one per chunk of updates.

Invariants enforced:
    - Each chunk is a single UPDATE guarded by ``released_at IS NULL``, the
      same predicate ReservationService.release_reservation() uses, so a
      reservation released concurrently is never overwritten and running
      two sweepers at once expires each reservation exactly once.
    - Reservations without a deadline are never touched.
    - All timestamps come from the injected Clock.

Failure modes:
    - A failing chunk is rolled back and logged; the sweep goes on with the
      next chunk and reports it in ``failed_batches``.  The next sweep
      picks the skipped reservations up again.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from inventory_kernel.db.engine import session_scope
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.models.reservation import RELEASE_REASON_EXPIRED, Reservation

logger = get_logger("batch.reservation_expiry")

DEFAULT_BATCH_SIZE = 500


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one sweep run."""

    candidates: int
    expired_count: int
    batches: int
    failed_batches: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ReservationExpirySweeper:
    """Bulk-expire overdue reservations.

    Contract:
        - Safe to run concurrently with itself and with explicit releases.
        - Idempotent: a second sweep at the same instant expires nothing.

    Non-goals:
        - Does NOT schedule itself (see services/scheduler.py).
        - Does NOT delete reservations.
    """

    job_name = "reservation_expiry_sweep"

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._batch_size = batch_size

    @staticmethod
    def _overdue(now):
        return (
            Reservation.released_at.is_(None),
            Reservation.expires_at.is_not(None),
            Reservation.expires_at <= now,
        )

    def _candidate_ids(self, now, organization_id: UUID | None) -> list[UUID]:
        stmt = select(Reservation.id).where(*self._overdue(now))
        if organization_id is not None:
            stmt = stmt.where(Reservation.organization_id == organization_id)
        stmt = stmt.order_by(Reservation.expires_at, Reservation.id)
        with session_scope(self._session_factory) as session:
            return list(session.execute(stmt).scalars())

    def _expire_chunk(self, chunk: list[UUID], now) -> int:
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(Reservation)
                .where(Reservation.id.in_(chunk), *self._overdue(now))
                .values(released_at=now, release_reason=RELEASE_REASON_EXPIRED)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    def sweep(self, organization_id: UUID | None = None) -> SweepResult:
        """Expire every overdue reservation, optionally for one organization."""
        now = self._clock.now()
        with LogContext.bind(job_name=self.job_name, organization_id=organization_id):
            logger.info(
                "reservation_sweep_started",
                extra={"as_of": now, "batch_size": self._batch_size},
            )
            candidates = self._candidate_ids(now, organization_id)

            expired = 0
            batches = 0
            failed = 0
            for start in range(0, len(candidates), self._batch_size):
                chunk = candidates[start:start + self._batch_size]
                batches += 1
                try:
                    expired += self._expire_chunk(chunk, now)
                except Exception:
                    failed += 1
                    logger.exception(
                        "reservation_sweep_batch_failed",
                        extra={"batch_number": batches, "batch_size": len(chunk)},
                    )

            result = SweepResult(
                candidates=len(candidates),
                expired_count=expired,
                batches=batches,
                failed_batches=failed,
            )
            logger.info("reservation_sweep_completed", extra=result.to_dict())
            return result

"""
SweepScheduler -- in-process cron scheduler for the expiry sweeper.

Contract:
    Polls on a fixed interval; when the injected clock reaches the next
    cron match, runs ``ReservationExpirySweeper.sweep()`` once and computes
    the following match.

Architecture: inventory_batch/services.  Uses inventory_batch.domain.schedule
    for pure cron evaluation and inventory_batch.tasks for the sweep itself.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - A missed window (process asleep, long sweep) fires once, not once per
      missed match.
    - stop() is honoured between polls; a running sweep is not interrupted.
"""

from __future__ import annotations

import threading
from datetime import datetime
from uuid import UUID

from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.logging_config import get_logger

from inventory_batch.domain.schedule import next_cron_match, parse_cron
from inventory_batch.tasks.reservation_expiry import (
    ReservationExpirySweeper,
    SweepResult,
)

logger = get_logger("batch.scheduler")

DEFAULT_CRON = "0 */6 * * *"


class SweepScheduler:
    """Run the expiry sweep on a cron schedule.

    Contract:
        - ``tick()`` runs the sweep if it is due and returns its result,
          otherwise returns None.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler; run one per deployment or rely on
          the sweep being safe to run concurrently.
        - Does NOT handle timezone conversions (expects UTC).
    """

    def __init__(
        self,
        sweeper: ReservationExpirySweeper,
        cron_expression: str = DEFAULT_CRON,
        clock: Clock | None = None,
        poll_seconds: float = 60,
        organization_id: UUID | None = None,
    ):
        self._sweeper = sweeper
        self._cron = parse_cron(cron_expression)
        self._clock = clock or SystemClock()
        self._poll_seconds = poll_seconds
        self._organization_id = organization_id
        self._next_run_at = next_cron_match(self._cron, self._clock.now())
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def next_run_at(self) -> datetime:
        return self._next_run_at

    def tick(self) -> SweepResult | None:
        """Run the sweep if due (public for testing)."""
        now = self._clock.now()
        if now < self._next_run_at:
            return None

        self._next_run_at = next_cron_match(self._cron, now)
        try:
            result = self._sweeper.sweep(self._organization_id)
        except Exception:
            logger.exception(
                "scheduled_sweep_failed",
                extra={"next_run_at": self._next_run_at},
            )
            return None

        logger.info(
            "scheduled_sweep_fired",
            extra={
                "expired_count": result.expired_count,
                "next_run_at": self._next_run_at,
            },
        )
        return result

    def start(self) -> None:
        """Start polling in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="reservation-sweep-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={
                "cron": self._cron.expression,
                "poll_seconds": self._poll_seconds,
                "next_run_at": self._next_run_at,
            },
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the polling thread to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self) -> None:
        """Block until stop() is called (foreground mode)."""
        while self.is_running:
            self._thread.join(timeout=self._poll_seconds)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._poll_seconds)

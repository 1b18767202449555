"""inventory_batch.tasks -- Maintenance tasks run by the scheduler or the CLI."""

from inventory_batch.tasks.reservation_expiry import (
    ReservationExpirySweeper,
    SweepResult,
)

__all__ = [
    "ReservationExpirySweeper",
    "SweepResult",
]

"""inventory_batch.services -- Scheduling infrastructure."""

from inventory_batch.services.scheduler import SweepScheduler

__all__ = ["SweepScheduler"]

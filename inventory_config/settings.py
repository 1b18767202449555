"""
Typed settings (``inventory_config.settings``).

Every setting the kernel, the facade and the sweeper read lives here as a
frozen dataclass.  Defaults are the values used when a key is absent from
the YAML file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class SweepSettings:
    """Reservation expiry sweeper schedule."""

    cron: str = "0 */6 * * *"
    batch_size: int = 500
    poll_seconds: float = 60
    organization_id: UUID | None = None


@dataclass(frozen=True)
class InventorySettings:
    """Top-level runtime settings."""

    database_url: str = "sqlite:///inventory.db"
    database_echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    default_currency: str = "USD"
    allow_negative_stock: bool = False
    # re-runs after the first attempt on a serialization failure or deadlock
    max_transaction_retries: int = 3
    log_level: str = "INFO"
    sweep: SweepSettings = field(default_factory=SweepSettings)

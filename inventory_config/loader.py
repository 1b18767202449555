"""
Settings loader (``inventory_config.loader``).

Responsibility
--------------
Reads an optional YAML file, applies environment overrides and returns a
validated ``InventorySettings``.

Precedence (highest first)
--------------------------
1. ``DATABASE_URL`` environment variable (database_url only)
2. The YAML file given as ``path`` or named by ``INVENTORY_CONFIG``
3. Dataclass defaults in ``settings.py``

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys, wrong types or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import os
from dataclasses import fields
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from inventory_config.settings import InventorySettings, SweepSettings
from inventory_kernel.db.types import validate_currency
from inventory_kernel.exceptions import InvalidCurrencyError

CONFIG_PATH_ENV = "INVENTORY_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a YAML mapping.  An empty file yields an empty dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _check_keys(data: dict[str, Any], allowed: set[str], section: str) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown {section} setting(s): {', '.join(sorted(unknown))}")


def _bool(value: Any, key: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def _int(value: Any, key: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def parse_sweep(data: dict[str, Any] | None) -> SweepSettings:
    """Parse the ``sweep`` section."""
    if data is None:
        return SweepSettings()
    if not isinstance(data, dict):
        raise ValueError(f"sweep must be a mapping, got {data!r}")
    _check_keys(data, {f.name for f in fields(SweepSettings)}, "sweep")

    defaults = SweepSettings()
    poll = data.get("poll_seconds", defaults.poll_seconds)
    if isinstance(poll, bool) or not isinstance(poll, (int, float)) or poll <= 0:
        raise ValueError(f"sweep.poll_seconds must be a positive number, got {poll!r}")

    organization_id = data.get("organization_id")
    if organization_id is not None:
        organization_id = UUID(str(organization_id))

    cron = data.get("cron", defaults.cron)
    if not isinstance(cron, str):
        raise ValueError(f"sweep.cron must be a string, got {cron!r}")

    return SweepSettings(
        cron=cron,
        batch_size=_int(data.get("batch_size", defaults.batch_size), "sweep.batch_size", 1),
        poll_seconds=poll,
        organization_id=organization_id,
    )


def parse_settings(data: dict[str, Any], environ: dict[str, str] | None = None) -> InventorySettings:
    """
    Build ``InventorySettings`` from a parsed YAML mapping plus environment.

    Raises:
        ValueError: unknown keys or invalid values.
    """
    environ = os.environ if environ is None else environ
    _check_keys(data, {f.name for f in fields(InventorySettings)}, "top-level")
    defaults = InventorySettings()

    database_url = environ.get(DATABASE_URL_ENV) or data.get("database_url", defaults.database_url)
    if not isinstance(database_url, str) or not database_url:
        raise ValueError(f"database_url must be a non-empty string, got {database_url!r}")

    try:
        currency = validate_currency(data.get("default_currency", defaults.default_currency))
    except InvalidCurrencyError as exc:
        raise ValueError(str(exc)) from exc

    log_level = str(data.get("log_level", defaults.log_level)).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {log_level!r}")

    return InventorySettings(
        database_url=database_url,
        database_echo=_bool(data.get("database_echo", defaults.database_echo), "database_echo"),
        pool_size=_int(data.get("pool_size", defaults.pool_size), "pool_size", 1),
        max_overflow=_int(data.get("max_overflow", defaults.max_overflow), "max_overflow", 0),
        default_currency=currency,
        allow_negative_stock=_bool(
            data.get("allow_negative_stock", defaults.allow_negative_stock),
            "allow_negative_stock",
        ),
        max_transaction_retries=_int(
            data.get("max_transaction_retries", defaults.max_transaction_retries),
            "max_transaction_retries",
            0,
        ),
        log_level=log_level,
        sweep=parse_sweep(data.get("sweep")),
    )


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> InventorySettings:
    """
    Load settings from ``path`` (or ``$INVENTORY_CONFIG``) and the environment.

    With neither a path nor the variable set, defaults plus environment
    overrides are returned.
    """
    environ = os.environ if environ is None else environ
    path = path or environ.get(CONFIG_PATH_ENV)
    data = load_yaml_file(Path(path)) if path else {}
    return parse_settings(data, environ)

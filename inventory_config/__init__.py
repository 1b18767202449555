"""
inventory_config -- Runtime settings for the inventory kernel.

The single public entry point is ``load_settings()``; it returns a frozen
``InventorySettings`` built from a YAML file and the environment.
"""

from inventory_config.loader import CONFIG_PATH_ENV, DATABASE_URL_ENV, load_settings
from inventory_config.settings import InventorySettings, SweepSettings

__all__ = [
    "CONFIG_PATH_ENV",
    "DATABASE_URL_ENV",
    "InventorySettings",
    "SweepSettings",
    "load_settings",
]

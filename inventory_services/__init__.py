"""
inventory_services -- Transactional entry points over the inventory kernel.

``InventoryFacade`` runs each request in its own transaction with conflict
retry; ``cli`` exposes database setup, stock lookups and the expiry sweeper
on the command line.
"""

from inventory_services.facade import InventoryFacade, StockLevel

__all__ = ["InventoryFacade", "StockLevel"]

"""
Inventory Kernel

A multi-tenant, append-only stock ledger with:
- Per-product unit-of-measure conversion
- Derived (never stored) stock levels
- Oversell-safe sales with automatic unpacking of packaged stock
- Time-bounded reservations with background expiry
"""

__version__ = "0.1.0"

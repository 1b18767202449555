"""
inventory_batch -- Background maintenance jobs for the inventory kernel.

Provides the reservation expiry sweeper and an in-process cron-driven
scheduler that runs it.

Architecture:
    inventory_batch/ is a top-level package.  It imports from
    inventory_kernel; nothing in inventory_kernel imports from it.
"""

"""
Root of the kernel's write services.

A service works inside a transaction it does not own.  It adds rows and
flushes so that constraint errors surface at the call site, and leaves
commit and rollback to InventoryFacade, the expiry sweeper, or the test
harness.  A sale that fails on its third line therefore leaves nothing
behind once the caller rolls back.
"""

from sqlalchemy.orm import Session


class BaseService:
    def __init__(self, session: Session):
        self.session = session

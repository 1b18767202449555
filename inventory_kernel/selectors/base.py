"""
Module: inventory_kernel.selectors.base
Responsibility: Common root for the read side (stock, reservations,
    products).
Architecture position: Kernel > Selectors.  May import from db/, models/
    and domain/; never from services/.

Invariants enforced:
    - Selectors only SELECT.  No add, delete, flush or commit.
    - Results are frozen DTOs from domain/dtos.py; ORM rows do not leak.
    - Quantities are summed from ledger rows on every call.
"""

from sqlalchemy.orm import Session


class BaseSelector:
    def __init__(self, session: Session):
        self.session = session

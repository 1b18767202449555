"""
StockLockService -- serializes check-then-act stock mutations.

Responsibility:
    A sale reads stock, decides, then writes.  Two concurrent sales must not
    both observe the same pre-sale level.  This service locks a dedicated
    row per (organization, product, scope) with ``SELECT ... FOR UPDATE``
    so the second transaction waits until the first commits, then reads
    the committed ledger (READ COMMITTED re-reads per statement).

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Called by
    MovementService (sell, negative adjust) and ReservationService (hard
    holds).

Invariants enforced:
    - Scope rows are created on first use under a savepoint; a concurrent
      creator loses the unique-constraint race and re-selects with lock.
    - Lock order is always the organization-wide scope ("*") first, then the
      warehouse scope, so two lockers never wait on each other in a cycle.
    - Locks are held until the caller's transaction ends.

Failure modes:
    - Deadlock/serialization errors surface as OperationalError; the facade
      retries the whole transaction.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.stock_lock import ALL_WAREHOUSES_SCOPE, StockLock
from inventory_kernel.services.base import BaseService

logger = get_logger("services.stock_lock")


class StockLockService(BaseService):
    """
    Row-level locks on stock scopes.

    Non-goals:
        - Does NOT call ``session.commit()``; the lock is released by the
          caller's commit or rollback.
    """

    @staticmethod
    def _locked_select(organization_id: UUID, product_id: UUID, scope_key: str):
        return (
            select(StockLock)
            .where(
                StockLock.organization_id == organization_id,
                StockLock.product_id == product_id,
                StockLock.scope_key == scope_key,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def _lock_one(self, organization_id: UUID, product_id: UUID, scope_key: str) -> StockLock:
        lock = self.session.execute(
            self._locked_select(organization_id, product_id, scope_key)
        ).scalar_one_or_none()
        if lock is not None:
            return lock

        # First use of this scope.  Another transaction may create it at the
        # same time, so insert under a savepoint.
        savepoint = self.session.begin_nested()
        try:
            lock = StockLock(
                organization_id=organization_id,
                product_id=product_id,
                scope_key=scope_key,
            )
            self.session.add(lock)
            self.session.flush()
            savepoint.commit()
            return lock
        except IntegrityError:
            logger.debug(
                "stock_lock_create_race_retry",
                extra={"product_id": str(product_id), "scope_key": scope_key},
            )
            savepoint.rollback()
            return self.session.execute(
                self._locked_select(organization_id, product_id, scope_key)
            ).scalar_one()

    def lock_scope(
        self,
        organization_id: UUID,
        product_id: UUID,
        warehouse_id: UUID | None = None,
    ) -> None:
        """
        Lock the organization-wide scope and, when given, the warehouse scope.

        Postconditions: the calling transaction holds the lock rows until it
        commits or rolls back.
        """
        self._lock_one(organization_id, product_id, ALL_WAREHOUSES_SCOPE)
        if warehouse_id is not None:
            self._lock_one(organization_id, product_id, str(warehouse_id))
        logger.debug(
            "stock_scope_locked",
            extra={
                "product_id": str(product_id),
                "warehouse_id": str(warehouse_id) if warehouse_id else None,
            },
        )

"""
InventoryLedger -- the only writer of inventory ledger rows.

Responsibility:
    Validates ledger entry drafts and appends them atomically inside the
    caller's transaction.

Architecture position:
    Kernel > Services.  Called by MovementService.  Read access to the
    ledger lives in selectors/stock_selector.py.

Invariants enforced:
    - quantity_in_base > 0 and finite on every entry; the movement type
      carries the direction.
    - All drafts are validated before anything is added, so a bad draft
      leaves the session untouched.
    - Append-only: this service never updates or deletes (ORM listeners in
      db/immutability.py block it anyway).

Failure modes:
    - InvalidQuantityError for non-positive or non-finite quantities.
    - InvalidCurrencyError for non-ISO-4217 currency codes.
"""

from collections.abc import Sequence

from inventory_kernel.db.types import quantize_quantity, validate_currency
from inventory_kernel.domain.dtos import LedgerEntryDraft
from inventory_kernel.domain.movement import MovementType
from inventory_kernel.exceptions import InvalidQuantityError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models.ledger import LedgerEntry
from inventory_kernel.services.base import BaseService

logger = get_logger("services.ledger")


class InventoryLedger(BaseService):
    """
    Append-only writer for LedgerEntry rows.

    Guarantees:
        - Either every draft is added or none is.
        - Flushes; never commits.
    """

    def _validate(self, draft: LedgerEntryDraft) -> LedgerEntry:
        movement_type = MovementType(draft.movement_type)
        if not draft.quantity_in_base.is_finite():
            raise InvalidQuantityError(draft.quantity_in_base, "must be finite")
        quantity = quantize_quantity(draft.quantity_in_base)
        if quantity <= 0:
            raise InvalidQuantityError(draft.quantity_in_base)
        if not draft.quantity_in_entered_unit.is_finite() or draft.quantity_in_entered_unit <= 0:
            raise InvalidQuantityError(draft.quantity_in_entered_unit)
        currency = validate_currency(draft.currency) if draft.currency else None

        return LedgerEntry(
            organization_id=draft.organization_id,
            product_id=draft.product_id,
            warehouse_id=draft.warehouse_id,
            occurred_at=draft.occurred_at,
            movement_type=movement_type.value,
            quantity_in_base=quantity,
            unit_code=draft.unit_code,
            quantity_in_entered_unit=quantize_quantity(draft.quantity_in_entered_unit),
            unit_cost=draft.unit_cost,
            currency=currency,
            is_packaged=draft.is_packaged,
            source_doc_type=draft.source_doc_type,
            source_doc_id=draft.source_doc_id,
            note=draft.note,
        )

    def append(self, drafts: Sequence[LedgerEntryDraft]) -> list[LedgerEntry]:
        """
        Insert one or more entries in the caller's transaction.

        Preconditions: drafts is non-empty.
        Postconditions: All entries are flushed, in draft order.
        """
        if not drafts:
            raise InvalidQuantityError(0, "at least one ledger entry is required")

        entries = [self._validate(draft) for draft in drafts]
        for line_seq, entry in enumerate(entries):
            entry.line_seq = line_seq
        self.session.add_all(entries)
        self.session.flush()

        for entry in entries:
            logger.debug(
                "ledger_entry_appended",
                extra={
                    "entry_id": str(entry.id),
                    "product_id": str(entry.product_id),
                    "movement_type": entry.movement_type,
                    "quantity_in_base": entry.quantity_in_base,
                    "is_packaged": entry.is_packaged,
                },
            )
        return entries

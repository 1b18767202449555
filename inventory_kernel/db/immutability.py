"""
Append-only guards for ledger entries, reservations and handling units.

Stock is re-derived from the ledger on every read, so a ledger row that
changed after the fact would silently change history.  The guards below
hook the ORM's before_update/before_delete events and raise
ImmutabilityViolationError before any SQL is emitted.

Rules:

    LedgerEntry    no column may change; never deleted
    Reservation    released_at, release_reason and expires_at may change;
                   released_at is write-once; never deleted
    HandlingUnit   unpacked_at may change and is write-once; never deleted
    HandlingUnitEvent
                   no column may change; never deleted

Core ``update()`` statements and raw SQL bypass ORM events.  The kernel
issues Core updates only for releases and the expiry sweep, and both touch
release fields alone.  On PostgreSQL, db/triggers.py applies the same
rules to every statement.

Call register_immutability_listeners() once at startup (the CLI and the
test suite do).  unregister_immutability_listeners() exists for tests.
"""

from dataclasses import dataclass

from sqlalchemy import event, inspect

from inventory_kernel.exceptions import ImmutabilityViolationError
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


@dataclass(frozen=True)
class _Rule:
    entity_type: str
    mutable: frozenset[str]
    write_once: str | None
    delete_reason: str


LEDGER_ENTRY_RULE = _Rule(
    entity_type="LedgerEntry",
    mutable=frozenset(),
    write_once=None,
    delete_reason="Ledger entries cannot be deleted",
)
RESERVATION_RULE = _Rule(
    entity_type="Reservation",
    mutable=frozenset({"released_at", "release_reason", "expires_at"}),
    write_once="released_at",
    delete_reason="Reservations are released, never deleted",
)
HANDLING_UNIT_RULE = _Rule(
    entity_type="HandlingUnit",
    mutable=frozenset({"unpacked_at"}),
    write_once="unpacked_at",
    delete_reason="Handling units cannot be deleted",
)
HANDLING_UNIT_EVENT_RULE = _Rule(
    entity_type="HandlingUnitEvent",
    mutable=frozenset(),
    write_once=None,
    delete_reason="Handling unit history cannot be deleted",
)


def _reject(rule: _Rule, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": rule.entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=rule.entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _update_guard(rule: _Rule):
    def check(mapper, connection, target):
        state = inspect(target)
        for attr in state.attrs:
            if not attr.history.has_changes():
                continue
            if attr.key not in rule.mutable:
                if not rule.mutable:
                    reason = f"{rule.entity_type} rows are immutable; append a correcting record"
                else:
                    reason = f"Cannot modify field '{attr.key}' on {rule.entity_type}"
                _reject(rule, target, "UPDATE", reason, field=attr.key)
            if attr.key == rule.write_once:
                previous = attr.history.deleted
                if previous and previous[0] is not None:
                    _reject(
                        rule, target, "UPDATE",
                        f"{rule.entity_type}.{attr.key} is already set", field=attr.key,
                    )

    return check


def _delete_guard(rule: _Rule):
    def check(mapper, connection, target):
        _reject(rule, target, "DELETE", rule.delete_reason)

    return check


_GUARDS: dict[str, tuple] = {}


def _listeners():
    from inventory_kernel.models.handling_unit import HandlingUnit, HandlingUnitEvent
    from inventory_kernel.models.ledger import LedgerEntry
    from inventory_kernel.models.reservation import Reservation

    if not _GUARDS:
        for model, rule in (
            (LedgerEntry, LEDGER_ENTRY_RULE),
            (Reservation, RESERVATION_RULE),
            (HandlingUnit, HANDLING_UNIT_RULE),
            (HandlingUnitEvent, HANDLING_UNIT_EVENT_RULE),
        ):
            _GUARDS[rule.entity_type] = (model, _update_guard(rule), _delete_guard(rule))

    for model, on_update, on_delete in _GUARDS.values():
        yield model, "before_update", on_update
        yield model, "before_delete", on_delete


def register_immutability_listeners():
    """Install the guards. Calling it again is a no-op."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """Remove the guards. Tests only."""
    for target, event_name, listener_fn in _listeners():
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)

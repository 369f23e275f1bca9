"""
ORM-level immutability enforcement for settlement records.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here inspect the pending change and raise
ImmutabilityViolationError, which aborts the flush and, through the unit of
work, the whole settlement.

    session.flush()
         |
         v
    [before_update] --> _check_update() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | UPDATE                                  | DELETE
--------------------|-----------------------------------------|---------
LedgerEntry         | never                                   | never
CashbookEntry       | never                                   | never
StockClosing(+Item) | never                                   | never
AuditEvent          | never                                   | never
Sale                | status flags only (status, is_returned) | never
Purchase            | return flags only                       | never
CreditPayment       | cancellation fields only                | never

updated_at / updated_by_id are audit metadata and may always change.

===============================================================================
USAGE
===============================================================================

    from settlement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to corrupt data on purpose (e.g. to prove the ledger replay
detects it) may call unregister_immutability_listeners() and re-register
afterwards.
"""

from sqlalchemy import event, inspect

from settlement_kernel.exceptions import ImmutabilityViolationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

# Fields that may change on an otherwise frozen document
_MUTABLE_FIELDS: dict[str, frozenset[str]] = {
    "LedgerEntry": frozenset(),
    "CashbookEntry": frozenset(),
    "StockClosing": frozenset(),
    "StockClosingItem": frozenset(),
    "AuditEvent": frozenset(),
    "Sale": frozenset({"status", "is_returned"}),
    "Purchase": frozenset({"is_returned", "returned_at", "returned_by_id"}),
    "CreditPayment": frozenset({"status", "cancelled_at", "cancelled_by_id"}),
}


def _check_update(mapper, connection, target):
    entity_type = type(target).__name__
    allowed = _MUTABLE_FIELDS.get(entity_type)
    if allowed is None:
        return

    insp = inspect(target)
    for attr in insp.mapper.column_attrs:
        if attr.key in _AUDIT_METADATA_FIELDS or attr.key in allowed:
            continue
        if insp.attrs[attr.key].history.has_changes():
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": entity_type,
                    "entity_id": str(target.id),
                    "operation": "UPDATE",
                    "field": attr.key,
                },
            )
            raise ImmutabilityViolationError(
                entity_type=entity_type,
                entity_id=str(target.id),
                reason=f"Cannot modify field '{attr.key}'",
            )


def _check_delete(mapper, connection, target):
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records cannot be deleted",
    )


def _protected_models():
    from settlement_kernel.models import (
        AuditEvent,
        CashbookEntry,
        CreditPayment,
        LedgerEntry,
        Purchase,
        Sale,
        StockClosing,
        StockClosingItem,
    )

    return (
        LedgerEntry,
        CashbookEntry,
        StockClosing,
        StockClosingItem,
        AuditEvent,
        Sale,
        Purchase,
        CreditPayment,
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: registering twice does not install duplicate listeners.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _check_update):
            event.listen(model, "before_update", _check_update)
        if not event.contains(model, "before_delete", _check_delete):
            event.listen(model, "before_delete", _check_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability
    rules to verify detection.
    """
    for model in _protected_models():
        _safe_remove_listener(model, "before_update", _check_update)
        _safe_remove_listener(model, "before_delete", _check_delete)

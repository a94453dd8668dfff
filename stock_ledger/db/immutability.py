"""
ORM-level append-only enforcement for the stock ledger.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners registered here inspect the pending change and
raise ImmutabilityViolationError, aborting the flush:

    session.flush()
         |
         v
    [before_update] --> _check_stock_movement_immutability() --> ImmutabilityViolationError
         |
         v
    [before_delete] --> _check_stock_movement_delete() ---------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity           | Rule
-----------------|----------------------------------------------------------
StockMovement    | Only the void trail may change, once; never deleted
BalanceSnapshot  | Never deleted (zero is a valid terminal state)

updated_at / updated_by are audit metadata and are always allowed to change.

Models are imported inline to avoid a models <-> db import cycle.

Usage:

    from stock_ledger.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    unregister_immutability_listeners()  # TESTS ONLY
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from stock_ledger.exceptions import ImmutabilityViolationError
from stock_ledger.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields a StockMovement may change after it was appended
STOCK_MOVEMENT_MUTABLE_FIELDS = frozenset(
    {"voided_at", "voided_by", "void_reason", "updated_at", "updated_by"}
)


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_stock_movement_immutability(mapper, connection, target):
    """
    Reject any UPDATE of a StockMovement other than setting its void trail once.
    """
    from stock_ledger.models.stock_movement import StockMovement

    if not isinstance(target, StockMovement):
        return

    voided_history = get_history(target, "voided_at")
    if voided_history.deleted and voided_history.deleted[0] is not None:
        _blocked(
            "StockMovement",
            str(target.seq),
            "UPDATE",
            "Voided movements cannot be un-voided or voided again",
            field="voided_at",
        )

    for attr in inspect(target).attrs:
        if attr.key in STOCK_MOVEMENT_MUTABLE_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "StockMovement",
                str(target.seq),
                "UPDATE",
                f"Field '{attr.key}' cannot be modified after append",
                field=attr.key,
            )


def _check_stock_movement_delete(mapper, connection, target):
    """Stock movements are never deleted; voiding is the soft delete."""
    from stock_ledger.models.stock_movement import StockMovement

    if not isinstance(target, StockMovement):
        return

    _blocked(
        "StockMovement",
        str(target.seq),
        "DELETE",
        "Stock movements cannot be deleted; void them instead",
    )


def _check_balance_snapshot_delete(mapper, connection, target):
    """Balance snapshots are never deleted."""
    from stock_ledger.models.balance_snapshot import BalanceSnapshot

    if not isinstance(target, BalanceSnapshot):
        return

    _blocked(
        "BalanceSnapshot",
        f"{target.variation_id}@{target.location_id}",
        "DELETE",
        "Balance snapshots cannot be deleted",
    )


_LISTENERS = (
    ("StockMovement", "before_update", _check_stock_movement_immutability),
    ("StockMovement", "before_delete", _check_stock_movement_delete),
    ("BalanceSnapshot", "before_delete", _check_balance_snapshot_delete),
)


def _models():
    from stock_ledger.models.balance_snapshot import BalanceSnapshot
    from stock_ledger.models.stock_movement import StockMovement

    return {"StockMovement": StockMovement, "BalanceSnapshot": BalanceSnapshot}


def register_immutability_listeners() -> None:
    """
    Register the append-only enforcement listeners (idempotent).

    Call once after models are importable and before any writes.
    """
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners() -> None:
    """
    Remove the enforcement listeners.

    WARNING: Only for tests that must bypass the rules to simulate drift.
    """
    models = _models()
    for model_name, event_name, listener in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)

"""
ORM-Level Immutability Enforcement for the change audit trail.

===============================================================================
WHY THIS EXISTS
===============================================================================

The change log is the only reconstructable history of what a bulk edit did to
each employee field.  A log row that can be edited after the fact is not an
audit trail.  Recovery from a bad edit is always a NEW revert batch with NEW
logs pointing back at what they reverse, never an in-place fix.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check the rules:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|------------------------------------------------------------
ChangeLogModel      | ALWAYS immutable from creation; never deleted
ChangeBatchModel    | Only ``status`` and ``completed_at`` may change; never deleted

Status changes themselves are issued as compare-and-set UPDATE statements by
the change batch store (Core statements bypass mapper events); the lifecycle
transition table in roster_batch.domain.lifecycle governs which ones are legal.
"""

from sqlalchemy import event, inspect

from roster_kernel.exceptions import ImmutabilityViolationError
from roster_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Fields of a change batch the lifecycle controller may update.
BATCH_MUTABLE_FIELDS = frozenset({"status", "completed_at"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_change_log_immutability(mapper, connection, target):
    """Prevent any updates to ChangeLogModel records."""
    raise _blocked(
        "ChangeLog", target.id, "UPDATE",
        "Change logs are immutable and cannot be modified",
    )


def _check_change_log_delete(mapper, connection, target):
    """Prevent deletion of ChangeLogModel records."""
    raise _blocked(
        "ChangeLog", target.id, "DELETE",
        "Change logs cannot be deleted",
    )


def _check_change_batch_immutability(mapper, connection, target):
    """Allow only status / completed_at to change on a ChangeBatchModel."""
    state = inspect(target)
    changed = sorted(
        attr.key
        for attr in state.attrs
        if attr.key not in BATCH_MUTABLE_FIELDS and attr.history.has_changes()
    )
    if changed:
        raise _blocked(
            "ChangeBatch", target.id, "UPDATE",
            f"Only status and completed_at may change (attempted: {', '.join(changed)})",
        )


def _check_change_batch_delete(mapper, connection, target):
    """Prevent deletion of ChangeBatchModel records."""
    raise _blocked(
        "ChangeBatch", target.id, "DELETE",
        "Change batches cannot be deleted",
    )


_LISTENERS = (
    ("ChangeLogModel", "before_update", _check_change_log_immutability),
    ("ChangeLogModel", "before_delete", _check_change_log_delete),
    ("ChangeBatchModel", "before_update", _check_change_batch_immutability),
    ("ChangeBatchModel", "before_delete", _check_change_batch_delete),
)


def _models() -> dict:
    from roster_batch.models.change import ChangeBatchModel, ChangeLogModel

    return {
        "ChangeBatchModel": ChangeBatchModel,
        "ChangeLogModel": ChangeLogModel,
    }


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already-registered listeners are skipped.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if event.contains(target, event_name, listener_fn):
            event.remove(target, event_name, listener_fn)

"""
ORM-level append-only enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule
--------------------|---------------------------------------------------------
Movement            | Never deleted.  The only permitted UPDATE is the void
                    | transition: voided False -> True together with
                    | void_reason, voided_at and voided_by_movement_id.
IdentifierIssue     | Never updated or deleted.
DriftReportRecord   | Never updated or deleted.

Batch, SerialNumber, StockLevelCache and SequenceCounter are mutable by
design (status lifecycles, projection, allocator state) and are not listed.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events during
flush, before any SQL is sent.  The listeners below inspect attribute history
and raise ImmutabilityViolationError; the flush aborts and the database is
never modified.  ``updated_at`` / ``updated_by`` are audit metadata and may
always change.

Bulk ``session.execute(update(...))`` statements bypass mapper events; no
service issues them against the protected tables.

===============================================================================
USAGE
===============================================================================

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to tamper with a row call unregister_immutability_listeners()
and re-register afterwards.
"""

from sqlalchemy import event, inspect

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata that may change on otherwise immutable rows
_ALWAYS_MUTABLE = frozenset({"updated_at", "updated_by"})

# Fields written by the one-way void transition
MOVEMENT_VOID_FIELDS = frozenset({
    "voided",
    "void_reason",
    "voided_at",
    "voided_by_movement_id",
})


def _block(entity_type: str, entity_id: str, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    return [
        attr.key
        for attr in inspect(target).attrs
        if attr.history.has_changes()
    ]


def _check_movement_update(mapper, connection, target):
    """
    Allow only the void transition on a Movement.

    The transition must set ``voided`` from False to True; once voided, no
    field (including the void fields themselves) may change again.
    """
    changed = [f for f in _changed_fields(target) if f not in _ALWAYS_MUTABLE]
    if not changed:
        return

    entity_id = str(target.id)
    illegal = [f for f in changed if f not in MOVEMENT_VOID_FIELDS]
    if illegal:
        _block(
            "Movement", entity_id, "UPDATE",
            f"Cannot modify field '{illegal[0]}' on a ledger movement",
            field=illegal[0],
        )

    voided_history = inspect(target).attrs.voided.history
    was_voided = bool(voided_history.deleted and voided_history.deleted[0])
    if not voided_history.has_changes():
        # Void fields changing without the flag flipping: either a re-void
        # of an already voided row or an edit of void metadata.
        _block(
            "Movement", entity_id, "UPDATE",
            "Void metadata can only be written by the void transition",
            field=changed[0],
        )
    if was_voided or not target.voided:
        _block(
            "Movement", entity_id, "UPDATE",
            "A voided movement cannot be un-voided",
            field="voided",
        )


def _check_movement_delete(mapper, connection, target):
    _block(
        "Movement", str(target.id), "DELETE",
        "Ledger movements cannot be deleted; void them instead",
    )


def _always_immutable(entity_type: str):
    def _check_update(mapper, connection, target):
        changed = [f for f in _changed_fields(target) if f not in _ALWAYS_MUTABLE]
        if not changed:
            return
        _block(
            entity_type, str(target.id), "UPDATE",
            f"{entity_type} records are immutable",
            field=changed[0],
        )

    def _check_delete(mapper, connection, target):
        _block(
            entity_type, str(target.id), "DELETE",
            f"{entity_type} records cannot be deleted",
        )

    return _check_update, _check_delete


_check_issue_update, _check_issue_delete = _always_immutable("IdentifierIssue")
_check_drift_update, _check_drift_delete = _always_immutable("DriftReportRecord")


def _listeners():
    from stock_kernel.models.drift_report import DriftReportRecord
    from stock_kernel.models.identifier_issue import IdentifierIssue
    from stock_kernel.models.movement import Movement

    return [
        (Movement, "before_update", _check_movement_update),
        (Movement, "before_delete", _check_movement_delete),
        (IdentifierIssue, "before_update", _check_issue_update),
        (IdentifierIssue, "before_delete", _check_issue_delete),
        (DriftReportRecord, "before_update", _check_drift_update),
        (DriftReportRecord, "before_delete", _check_drift_delete),
    ]


def register_immutability_listeners():
    """
    Register all append-only enforcement listeners.

    Idempotent: a listener already registered is not added twice.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """Remove the listeners.  TESTS ONLY."""
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)

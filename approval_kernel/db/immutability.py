"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The approval history must be append-only and reconstructable independent of
the current request state.  This module is the first layer of that guarantee:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications made through SQLAlchemy sessions
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/sql/<dialect>/*.sql (database triggers)
    - Catches raw SQL, bulk statements, direct database access

Both layers enforce the same rules.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                | Rule
----------------------|------------------------------------------------------
ApprovalAction        | ALWAYS immutable: no UPDATE, no ORM DELETE
ApprovalPurgeRecord   | ALWAYS immutable: no UPDATE, no DELETE
ApprovalRequest       | id/entity_type/entity_id/request_type never change;
                      | APPROVED rows are frozen; DELETE only after a purge
                      | record for the same request has been written

Action rows disappear only through the database's ON DELETE CASCADE when a
purged request is deleted; the ORM never issues DELETE for them
(relationship uses passive_deletes="all").
"""

from sqlalchemy import event, select
from sqlalchemy.orm.attributes import get_history

from approval_kernel.exceptions import ImmutabilityViolationError
from approval_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

REQUEST_IDENTITY_FIELDS = ("entity_type", "entity_id", "request_type")


def _block(entity_type: str, entity_id: str, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **fields,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


# =============================================================================
# ApprovalAction (append-only)
# =============================================================================


def _check_action_update(mapper, connection, target):
    """Prevent ANY update to an approval action."""
    _block(
        "ApprovalAction",
        str(target.id),
        "UPDATE",
        "Approval actions are append-only and cannot be modified",
    )


def _check_action_delete(mapper, connection, target):
    """Prevent ORM deletion of an approval action."""
    _block(
        "ApprovalAction",
        str(target.id),
        "DELETE",
        "Approval actions cannot be deleted",
    )


# =============================================================================
# ApprovalPurgeRecord (append-only)
# =============================================================================


def _check_purge_record_update(mapper, connection, target):
    _block(
        "ApprovalPurgeRecord",
        str(target.id),
        "UPDATE",
        "Purge records are append-only and cannot be modified",
    )


def _check_purge_record_delete(mapper, connection, target):
    _block(
        "ApprovalPurgeRecord",
        str(target.id),
        "DELETE",
        "Purge records cannot be deleted",
    )


# =============================================================================
# ApprovalRequest (lifecycle-constrained)
# =============================================================================


def _check_request_update(mapper, connection, target):
    """
    Block identity changes and any change to an already-approved request.

    "Was approved" is decided from attribute history, so the transition
    PENDING_APPROVAL -> APPROVED itself is allowed.
    """
    for field in REQUEST_IDENTITY_FIELDS:
        if get_history(target, field).deleted:
            _block(
                "ApprovalRequest",
                str(target.id),
                "UPDATE",
                f"Cannot modify identity field '{field}'",
                field=field,
            )

    status_history = get_history(target, "status")
    if status_history.deleted:
        was_approved = status_history.deleted[0] == "APPROVED"
    else:
        was_approved = target.status == "APPROVED"

    if was_approved:
        _block(
            "ApprovalRequest",
            str(target.id),
            "UPDATE",
            "Approved requests are final and cannot be modified",
        )


def _check_request_delete(mapper, connection, target):
    """Allow deletion only once a purge record exists for the request."""
    from approval_kernel.models.approval import ApprovalPurgeRecordModel

    purged = connection.execute(
        select(ApprovalPurgeRecordModel.id).where(
            ApprovalPurgeRecordModel.request_id == target.id
        )
    ).first()
    if purged is None:
        _block(
            "ApprovalRequest",
            str(target.id),
            "DELETE",
            "Approval requests can only be removed by an administrative purge",
        )


# =============================================================================
# Registration
# =============================================================================


def _listener_table():
    from approval_kernel.models.approval import (
        ApprovalActionModel,
        ApprovalPurgeRecordModel,
        ApprovalRequestModel,
    )

    return (
        (ApprovalActionModel, "before_update", _check_action_update),
        (ApprovalActionModel, "before_delete", _check_action_delete),
        (ApprovalPurgeRecordModel, "before_update", _check_purge_record_update),
        (ApprovalPurgeRecordModel, "before_delete", _check_purge_record_delete),
        (ApprovalRequestModel, "before_update", _check_request_update),
        (ApprovalRequestModel, "before_delete", _check_request_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once; already-registered listeners are skipped.
    Call during application start-up, after models are importable.
    """
    for target, event_name, fn in _listener_table():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability
    to verify the database-level triggers.
    """
    for target, event_name, fn in _listener_table():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)


def listeners_registered() -> bool:
    return all(
        event.contains(target, event_name, fn)
        for target, event_name, fn in _listener_table()
    )

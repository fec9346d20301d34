"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected approval operation must return a specific, inspectable reason.
Callers (entity services, the CLI, an HTTP layer) branch on the exception TYPE
and its ``code``, never on message text.

    try:
        orchestrator.decide(request_id, "APPROVE", actor_id, actor_role)
    except IllegalTransitionError as e:
        api_response(code=e.code, status=e.current_status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- ApprovalError
    |   +-- ApprovalNotFoundError
    |   +-- IllegalTransitionError
    |   +-- UnauthorizedActionError
    |   +-- MissingJustificationError
    |   +-- DuplicatePendingRequestError
    |   +-- InvalidApprovalPayloadError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |   +-- HistoryInconsistentError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ApprovalStorageError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                       | When Raised
-----------|----------------------------|---------------------------------------
Approval   | APPROVAL_NOT_FOUND         | Unknown request id
           | ILLEGAL_TRANSITION         | Action not legal for current status
           | UNAUTHORIZED               | Role lacks privilege / self-decision
           | MISSING_JUSTIFICATION      | REJECT/REVOKE/purge without a reason
           | DUPLICATE_PENDING_REQUEST  | Entity already has a pending request
           | INVALID_APPROVAL_PAYLOAD   | Malformed submit input
-----------|----------------------------|---------------------------------------
Audit      | AUDIT_CHAIN_BROKEN         | Action hash chain does not verify
           | HISTORY_INCONSISTENT       | Action statuses do not replay
-----------|----------------------------|---------------------------------------
Immutable  | IMMUTABILITY_VIOLATION     | UPDATE/DELETE of an append-only row
-----------|----------------------------|---------------------------------------
Storage    | STORAGE_ERROR              | Unclassified database failure

None of these are retried inside the kernel.  Business-rule errors are caused
by caller input; ApprovalStorageError is raised only after the surrounding
transaction has been rolled back.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Workflow exceptions


class ApprovalError(ApprovalKernelError):
    """Base exception for approval workflow errors."""

    code: str = "APPROVAL_ERROR"


class ApprovalNotFoundError(ApprovalError):
    """Approval request does not exist."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, request_id: str | None, message: str | None = None):
        self.request_id = request_id
        super().__init__(message or f"Approval request not found: {request_id}")


class EntityHistoryNotFoundError(ApprovalNotFoundError):
    """No approval request has ever been recorded for an entity."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            None,
            f"No approval history for {entity_type} {entity_id}",
        )


class IllegalTransitionError(ApprovalError):
    """The action is not legal for the request's current status."""

    code: str = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        request_id: str | None,
        current_status: str | None,
        action_type: str,
    ):
        self.request_id = request_id
        self.current_status = current_status
        self.action_type = action_type
        super().__init__(
            f"Cannot {action_type} request {request_id}: "
            f"status is {current_status or 'none'}"
        )


class UnauthorizedActionError(ApprovalError):
    """The acting principal may not perform this action."""

    code: str = "UNAUTHORIZED"

    def __init__(
        self,
        request_id: str | None,
        actor_id: str,
        actor_role: str | None,
        action_type: str,
        reason: str = "role lacks approval privilege",
    ):
        self.request_id = request_id
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.action_type = action_type
        self.reason = reason
        super().__init__(
            f"Actor {actor_id} (role={actor_role}) may not {action_type} "
            f"request {request_id}: {reason}"
        )


class MissingJustificationError(ApprovalError):
    """A justification is required for this action but was empty."""

    code: str = "MISSING_JUSTIFICATION"

    def __init__(self, request_id: str | None, action_type: str):
        self.request_id = request_id
        self.action_type = action_type
        super().__init__(
            f"{action_type} on request {request_id} requires a non-empty justification"
        )


class DuplicatePendingRequestError(ApprovalError):
    """The entity already carries a PENDING_APPROVAL request."""

    code: str = "DUPLICATE_PENDING_REQUEST"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        existing_request_id: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"{entity_type} {entity_id} already has a pending approval request"
            + (f" ({existing_request_id})" if existing_request_id else "")
        )


class InvalidApprovalPayloadError(ApprovalError):
    """Submit/update input is malformed."""

    code: str = "INVALID_APPROVAL_PAYLOAD"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid approval input '{field}': {reason}")


# Audit-related exceptions


class AuditError(ApprovalKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Action log hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, action_id: str, expected_hash: str, actual_hash: str):
        self.action_id = action_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Action chain broken at {action_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class HistoryInconsistentError(AuditError):
    """Action log statuses do not trace a legal lifecycle path."""

    code: str = "HISTORY_INCONSISTENT"

    def __init__(self, request_id: str | None, sequence: int, reason: str):
        self.request_id = request_id
        self.sequence = sequence
        self.reason = reason
        super().__init__(
            f"History of request {request_id} inconsistent at action "
            f"#{sequence}: {reason}"
        )


# Immutability-related exceptions


class ImmutabilityError(ApprovalKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Approval actions and purge records are append-only.  Request identity
    fields never change, and approved requests are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Infrastructure


class ApprovalStorageError(ApprovalKernelError):
    """Opaque storage-layer failure (connection loss, unclassified constraint)."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")

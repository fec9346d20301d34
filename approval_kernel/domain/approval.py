"""
Approval domain types -- pure value objects, no I/O.

Responsibility:
    Defines the vocabulary of the approval workflow: entity, request, status,
    action and source tags, plus the frozen DTOs handed to callers in place
    of ORM rows.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by models/ (to_dto), services/, selectors/ and outer layers.

Invariants enforced:
    - Every tag is a closed ``str`` enum; new entity kinds are added by
      extending ``EntityType`` (and the matching CHECK constraint).
    - Payload documents are deep-copied into DTOs so a caller mutating a
      returned document cannot alter the session's identity map.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class EntityType(str, Enum):
    """Kinds of governed entity whose changes require approval."""

    LOADER = "LOADER"
    DASHBOARD = "DASHBOARD"
    INCIDENT = "INCIDENT"
    CHART = "CHART"
    ALERT_RULE = "ALERT_RULE"


class RequestType(str, Enum):
    """What kind of change is proposed."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ApprovalStatus(str, Enum):
    """Lifecycle status of an approval request."""

    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


TERMINAL_STATUSES: frozenset[ApprovalStatus] = frozenset({
    ApprovalStatus.APPROVED,
    ApprovalStatus.REJECTED,
})


class ActionType(str, Enum):
    """One step in a request's lifecycle."""

    SUBMIT = "SUBMIT"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    RESUBMIT = "RESUBMIT"
    REVOKE = "REVOKE"
    UPDATE_REQUEST = "UPDATE_REQUEST"


class Decision(str, Enum):
    """The two outcomes a privileged actor may record."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"

    @property
    def action_type(self) -> ActionType:
        return ActionType(self.value)


class RequestSource(str, Enum):
    """Where a request originated."""

    WEB_UI = "WEB_UI"
    IMPORT = "IMPORT"
    API = "API"
    MANUAL = "MANUAL"


def _copy_document(doc: Any) -> Any:
    return copy.deepcopy(doc) if doc is not None else None


@dataclass(frozen=True)
class WorkflowPolicy:
    """Who may decide, as resolved from configuration.

    Contract:
        ``privileged_roles`` holds upper-cased role names.  Role matching
        is case-insensitive.
    """

    privileged_roles: frozenset[str] = frozenset({"ADMIN"})
    allow_self_decision: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "privileged_roles",
            frozenset(r.strip().upper() for r in self.privileged_roles),
        )

    def is_privileged(self, role: str | None) -> bool:
        if not role:
            return False
        return role.strip().upper() in self.privileged_roles


DEFAULT_WORKFLOW_POLICY = WorkflowPolicy()


@dataclass(frozen=True)
class ApprovalActionRecord:
    """Immutable record of one action taken against a request."""

    action_id: UUID
    request_id: UUID
    sequence: int
    action_type: ActionType
    action_by: str
    action_at: datetime
    previous_status: ApprovalStatus | None
    new_status: ApprovalStatus | None
    justification: str | None = None
    actor_role: str | None = None
    state_hash: str | None = None
    payload_hash: str = ""
    prev_hash: str | None = None
    hash: str = ""

    @property
    def changes_status(self) -> bool:
        return self.new_status is not None


@dataclass(frozen=True)
class ApprovalRequest:
    """Snapshot of an approval request as of the last read."""

    request_id: UUID
    entity_type: EntityType
    entity_id: str
    request_type: RequestType
    status: ApprovalStatus
    requested_by: str
    requested_at: datetime
    proposed_state: Any
    current_state: Any = None
    change_summary: str | None = None
    source: RequestSource | None = None
    source_label: str | None = None
    extra_data: Any = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "proposed_state", _copy_document(self.proposed_state))
        object.__setattr__(self, "current_state", _copy_document(self.current_state))
        object.__setattr__(self, "extra_data", _copy_document(self.extra_data))

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING_APPROVAL

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class PendingApproval:
    """A pending request annotated with its most recent action."""

    request: ApprovalRequest
    last_action_type: ActionType | None
    last_action_at: datetime | None


@dataclass(frozen=True)
class RequestHistory:
    """A request with its complete, ordered action timeline."""

    request: ApprovalRequest
    actions: tuple[ApprovalActionRecord, ...] = field(default_factory=tuple)

    @property
    def last_action(self) -> ApprovalActionRecord | None:
        return self.actions[-1] if self.actions else None


@dataclass(frozen=True)
class PurgeRecord:
    """Durable trace of an administrative purge."""

    purge_id: UUID
    request_id: UUID
    entity_type: EntityType
    entity_id: str
    final_status: ApprovalStatus
    purged_by: str
    purged_at: datetime
    reason: str
    action_count: int
    last_action_hash: str | None

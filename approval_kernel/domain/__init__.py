"""Pure approval domain: types, transition rules, clock."""

from approval_kernel.domain.approval import (
    ActionType,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
    Decision,
    EntityType,
    PendingApproval,
    PurgeRecord,
    RequestHistory,
    RequestSource,
    RequestType,
    WorkflowPolicy,
)
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.transitions import (
    TRANSITION_RULES,
    TransitionOutcome,
    TransitionRejection,
    evaluate_transition,
    replay_status_path,
    require_transition,
)

__all__ = [
    "ActionType",
    "ApprovalActionRecord",
    "ApprovalRequest",
    "ApprovalStatus",
    "Clock",
    "Decision",
    "DeterministicClock",
    "EntityType",
    "PendingApproval",
    "PurgeRecord",
    "RequestHistory",
    "RequestSource",
    "RequestType",
    "SystemClock",
    "TRANSITION_RULES",
    "TransitionOutcome",
    "TransitionRejection",
    "WorkflowPolicy",
    "evaluate_transition",
    "replay_status_path",
    "require_transition",
]

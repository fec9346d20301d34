"""
Transition validator -- pure lifecycle rules for approval requests.

Responsibility:
    Decides, from (current status, action, actor role, justification),
    whether an action is legal and which status it produces.  Also replays
    a recorded action log to prove it traces a legal path.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by the
    approval manager BEFORE any mutation and by the selector when verifying
    history.

Invariants enforced:
    - Status moves only along TRANSITION_RULES; APPROVED is terminal.
    - APPROVE/REJECT require a privileged role.
    - REJECT/REVOKE require a non-blank justification.
    - Replayed previous_status/new_status pairs chain without gaps.

Failure modes:
    - evaluate_transition() never raises; it returns a TransitionOutcome.
    - require_transition() raises IllegalTransitionError,
      UnauthorizedActionError or MissingJustificationError.
    - replay_status_path() raises HistoryInconsistentError.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from approval_kernel.domain.approval import (
    DEFAULT_WORKFLOW_POLICY,
    ActionType,
    ApprovalActionRecord,
    ApprovalStatus,
    WorkflowPolicy,
)
from approval_kernel.exceptions import (
    HistoryInconsistentError,
    IllegalTransitionError,
    MissingJustificationError,
    UnauthorizedActionError,
)


@dataclass(frozen=True)
class TransitionRule:
    """One legal (status, action) pair.

    ``to_status`` of None means the action leaves the status unchanged.
    """

    from_status: ApprovalStatus | None
    action: ActionType
    to_status: ApprovalStatus | None
    requires_privilege: bool = False
    requires_justification: bool = False
    is_decision: bool = False


TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(None, ActionType.SUBMIT, ApprovalStatus.PENDING_APPROVAL),
    TransitionRule(
        ApprovalStatus.PENDING_APPROVAL,
        ActionType.APPROVE,
        ApprovalStatus.APPROVED,
        requires_privilege=True,
        is_decision=True,
    ),
    TransitionRule(
        ApprovalStatus.PENDING_APPROVAL,
        ActionType.REJECT,
        ApprovalStatus.REJECTED,
        requires_privilege=True,
        requires_justification=True,
        is_decision=True,
    ),
    TransitionRule(
        ApprovalStatus.PENDING_APPROVAL,
        ActionType.UPDATE_REQUEST,
        None,
    ),
    TransitionRule(
        ApprovalStatus.PENDING_APPROVAL,
        ActionType.REVOKE,
        ApprovalStatus.REJECTED,
        requires_justification=True,
    ),
    TransitionRule(
        ApprovalStatus.REJECTED,
        ActionType.RESUBMIT,
        ApprovalStatus.PENDING_APPROVAL,
    ),
)

_RULES_BY_KEY: dict[tuple[ApprovalStatus | None, ActionType], TransitionRule] = {
    (rule.from_status, rule.action): rule for rule in TRANSITION_RULES
}


class TransitionRejection(str, Enum):
    """Why a transition was refused."""

    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    UNAUTHORIZED = "UNAUTHORIZED"
    SELF_DECISION = "SELF_DECISION"
    MISSING_JUSTIFICATION = "MISSING_JUSTIFICATION"


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of evaluating a transition.

    When allowed, ``resulting_status`` is the status after the action
    (equal to the current status for UPDATE_REQUEST).
    """

    allowed: bool
    current_status: ApprovalStatus | None
    action: ActionType
    resulting_status: ApprovalStatus | None = None
    rejection: TransitionRejection | None = None
    rule: TransitionRule | None = None


def find_rule(
    current: ApprovalStatus | None,
    action: ActionType,
) -> TransitionRule | None:
    return _RULES_BY_KEY.get((current, action))


def allowed_actions(current: ApprovalStatus | None) -> tuple[ActionType, ...]:
    """Actions legal from ``current`` (ignoring role and justification)."""
    return tuple(r.action for r in TRANSITION_RULES if r.from_status == current)


def has_text(value: object) -> bool:
    return isinstance(value, str) and value.strip() != ""


def evaluate_transition(
    current: ApprovalStatus | None,
    action: ActionType,
    *,
    actor_role: str | None = None,
    justification: str | None = None,
    actor_id: str | None = None,
    requested_by: str | None = None,
    policy: WorkflowPolicy = DEFAULT_WORKFLOW_POLICY,
) -> TransitionOutcome:
    """Evaluate an action against the rules table.

    Checks run in a fixed order: legality, privilege, self-decision,
    justification.  An illegal (status, action) pair is therefore reported
    as ILLEGAL_TRANSITION whatever the actor's role.
    """
    rule = find_rule(current, action)
    if rule is None:
        return TransitionOutcome(
            allowed=False,
            current_status=current,
            action=action,
            rejection=TransitionRejection.ILLEGAL_TRANSITION,
        )

    if rule.requires_privilege and not policy.is_privileged(actor_role):
        return TransitionOutcome(
            allowed=False,
            current_status=current,
            action=action,
            rejection=TransitionRejection.UNAUTHORIZED,
            rule=rule,
        )

    if (
        rule.is_decision
        and not policy.allow_self_decision
        and actor_id is not None
        and actor_id == requested_by
    ):
        return TransitionOutcome(
            allowed=False,
            current_status=current,
            action=action,
            rejection=TransitionRejection.SELF_DECISION,
            rule=rule,
        )

    if rule.requires_justification and not has_text(justification):
        return TransitionOutcome(
            allowed=False,
            current_status=current,
            action=action,
            rejection=TransitionRejection.MISSING_JUSTIFICATION,
            rule=rule,
        )

    return TransitionOutcome(
        allowed=True,
        current_status=current,
        action=action,
        resulting_status=rule.to_status if rule.to_status is not None else current,
        rule=rule,
    )


def require_transition(
    current: ApprovalStatus | None,
    action: ActionType,
    *,
    request_id: str | None = None,
    actor_id: str = "",
    actor_role: str | None = None,
    justification: str | None = None,
    requested_by: str | None = None,
    policy: WorkflowPolicy = DEFAULT_WORKFLOW_POLICY,
) -> TransitionOutcome:
    """Like evaluate_transition() but raises the typed error on refusal."""
    outcome = evaluate_transition(
        current,
        action,
        actor_role=actor_role,
        justification=justification,
        actor_id=actor_id,
        requested_by=requested_by,
        policy=policy,
    )
    if outcome.allowed:
        return outcome

    status_value = current.value if current is not None else None
    if outcome.rejection == TransitionRejection.ILLEGAL_TRANSITION:
        raise IllegalTransitionError(request_id, status_value, action.value)
    if outcome.rejection == TransitionRejection.UNAUTHORIZED:
        raise UnauthorizedActionError(request_id, actor_id, actor_role, action.value)
    if outcome.rejection == TransitionRejection.SELF_DECISION:
        raise UnauthorizedActionError(
            request_id,
            actor_id,
            actor_role,
            action.value,
            reason="requester may not decide their own request",
        )
    raise MissingJustificationError(request_id, action.value)


def replay_status_path(
    actions: Iterable[ApprovalActionRecord],
) -> ApprovalStatus | None:
    """Replay an action log and return the status it implies.

    Each action's ``previous_status`` must equal the status produced by the
    preceding status-changing action, and each (status, action) pair must
    be a legal rule whose result matches ``new_status``.  Authorization is
    not re-checked; roles are a property of the moment of decision.
    """
    status: ApprovalStatus | None = None
    expected_sequence = 1
    request_id: str | None = None

    for action in actions:
        request_id = str(action.request_id)
        if action.sequence != expected_sequence:
            raise HistoryInconsistentError(
                request_id,
                action.sequence,
                f"expected sequence {expected_sequence}",
            )
        expected_sequence += 1

        rule = find_rule(status, action.action_type)
        if rule is None:
            raise HistoryInconsistentError(
                request_id,
                action.sequence,
                f"{action.action_type.value} is not legal from "
                f"{status.value if status else 'none'}",
            )

        if rule.to_status is None:
            if action.previous_status is not None or action.new_status is not None:
                raise HistoryInconsistentError(
                    request_id,
                    action.sequence,
                    f"{action.action_type.value} must not record a status change",
                )
            continue

        if action.previous_status != status:
            raise HistoryInconsistentError(
                request_id,
                action.sequence,
                f"previous_status {action.previous_status} contradicts {status}",
            )
        if action.new_status != rule.to_status:
            raise HistoryInconsistentError(
                request_id,
                action.sequence,
                f"new_status {action.new_status} but rule yields {rule.to_status.value}",
            )
        status = rule.to_status

    return status

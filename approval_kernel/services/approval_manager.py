"""
approval_kernel.services.approval_manager -- Approval lifecycle management.

Responsibility:
    Executes submit / approve / reject / resubmit / revoke (plus
    update_request and the administrative purge) as atomic units: each
    request mutation and its action row are written inside one savepoint,
    after the transition validator has accepted the action.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/, utils/.
    Flush only; the caller owns the outer transaction.

Invariants enforced:
    - One pending request per entity: checked by a read, then guaranteed by
      the partial unique index.  A losing concurrent insert is
      re-classified as DuplicatePendingRequestError.
    - Legal transitions only: domain/transitions.py is consulted before any
      mutation.
    - Exactly one action row per mutation, with a per-request sequence and
      hash chain.
    - First writer wins on concurrent decisions: the request row is read
      with SELECT ... FOR UPDATE and versioned; a stale write is reported as
      IllegalTransitionError.

Failure modes:
    - ApprovalNotFoundError, IllegalTransitionError, UnauthorizedActionError,
      MissingJustificationError, DuplicatePendingRequestError,
      InvalidApprovalPayloadError.  On any of these the savepoint is rolled
      back and nothing is written.
    - Unclassified SQLAlchemyError propagates unchanged (the orchestrator
      turns it into ApprovalStorageError after rollback).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from approval_kernel.domain.approval import (
    DEFAULT_WORKFLOW_POLICY,
    ActionType,
    ApprovalRequest,
    ApprovalStatus,
    Decision,
    EntityType,
    PurgeRecord,
    RequestSource,
    RequestType,
    WorkflowPolicy,
)
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.transitions import has_text, require_transition
from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    DuplicatePendingRequestError,
    IllegalTransitionError,
    InvalidApprovalPayloadError,
    MissingJustificationError,
    UnauthorizedActionError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import (
    ApprovalActionModel,
    ApprovalPurgeRecordModel,
    ApprovalRequestModel,
)
from approval_kernel.services.base import BaseService
from approval_kernel.utils.hashing import (
    hash_action,
    hash_action_payload,
    hash_document,
)

logger = get_logger("services.approval_manager")

PURGE_ACTION = "PURGE"


def _coerce_enum(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidApprovalPayloadError(
            field, f"'{value}' is not one of {allowed}",
        ) from None


def _fingerprint(document: Any, field: str) -> str | None:
    try:
        return hash_document(document)
    except (TypeError, ValueError) as exc:
        raise InvalidApprovalPayloadError(
            field, f"not a JSON document: {exc}",
        ) from None


class ApprovalManager(BaseService[ApprovalRequestModel]):
    """Manages the approval request lifecycle and its action log.

    Contract:
        Every public method either fully applies one action (request row +
        one action row) or leaves the session exactly as it found it.

    Non-goals:
        Does NOT commit.  Does NOT apply approved changes to the governed
        entity; callers do that after approve() returns.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: WorkflowPolicy | None = None,
    ) -> None:
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_WORKFLOW_POLICY

    @property
    def policy(self) -> WorkflowPolicy:
        return self._policy

    # ------------------------------------------------------------------
    # submit
    # ------------------------------------------------------------------

    def submit(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        request_type: RequestType | str,
        proposed_state: Any,
        requested_by: str,
        current_state: Any = None,
        source: RequestSource | str | None = None,
        source_label: str | None = None,
        change_summary: str | None = None,
        extra_data: Any = None,
    ) -> ApprovalRequest:
        """Open a new PENDING_APPROVAL request and append its SUBMIT action."""
        entity_type = _coerce_enum(EntityType, entity_type, "entity_type")
        request_type = _coerce_enum(RequestType, request_type, "request_type")
        if source is not None:
            source = _coerce_enum(RequestSource, source, "source")
        if not has_text(entity_id):
            raise InvalidApprovalPayloadError("entity_id", "must not be blank")
        if not has_text(requested_by):
            raise InvalidApprovalPayloadError("requested_by", "must not be blank")
        if proposed_state is None:
            raise InvalidApprovalPayloadError("proposed_state", "is required")
        if request_type == RequestType.CREATE and current_state is not None:
            raise InvalidApprovalPayloadError(
                "current_state", "must be absent for CREATE requests",
            )
        state_hash = _fingerprint(proposed_state, "proposed_state")
        _fingerprint(current_state, "current_state")
        _fingerprint(extra_data, "extra_data")

        outcome = require_transition(
            None, ActionType.SUBMIT, actor_id=requested_by, policy=self._policy,
        )

        existing = self._find_pending(entity_type.value, entity_id)
        if existing is not None:
            self._reject_duplicate(entity_type.value, entity_id, existing.id)

        now = self._clock.now()
        model = ApprovalRequestModel(
            id=uuid4(),
            entity_type=entity_type.value,
            entity_id=entity_id,
            request_type=request_type.value,
            status=outcome.resulting_status.value,
            requested_by=requested_by,
            requested_at=now,
            proposed_state=proposed_state,
            current_state=current_state,
            change_summary=change_summary,
            source=source.value if source is not None else None,
            source_label=source_label,
            extra_data=extra_data,
            created_at=now,
            updated_at=now,
        )

        try:
            with self.savepoint() as session:
                session.add(model)
                session.flush()
                self._append_action(
                    model,
                    ActionType.SUBMIT,
                    actor_id=requested_by,
                    at=now,
                    previous_status=None,
                    new_status=outcome.resulting_status,
                    justification=change_summary,
                    state_hash=state_hash,
                )
        except IntegrityError:
            self._classify_pending_conflict(entity_type.value, entity_id)
            raise

        logger.info(
            "approval_submitted",
            extra={
                "request_id": str(model.id),
                "entity_type": entity_type.value,
                "entity_id": entity_id,
                "request_type": request_type.value,
                "requested_by": requested_by,
            },
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        request_id: UUID,
        decision: Decision | str,
        actor_id: str,
        actor_role: str | None,
        justification: str | None = None,
    ) -> ApprovalRequest:
        """Record APPROVE or REJECT on a pending request."""
        decision = _coerce_enum(Decision, decision, "decision")
        action = decision.action_type

        def mutate(model: ApprovalRequestModel, new_status, now: datetime) -> None:
            model.status = new_status.value
            model.decided_by = actor_id
            model.decided_at = now
            if action == ActionType.REJECT:
                model.rejection_reason = justification

        model = self._apply(
            request_id,
            action,
            actor_id=actor_id,
            actor_role=actor_role,
            justification=justification,
            mutate=mutate,
        )
        logger.info(
            "approval_decided",
            extra={
                "request_id": str(request_id),
                "decision": decision.value,
                "decided_by": actor_id,
                "actor_role": actor_role,
            },
        )
        return model.to_dto()

    def approve(
        self,
        request_id: UUID,
        actor_id: str,
        actor_role: str | None,
        justification: str | None = None,
    ) -> ApprovalRequest:
        return self.decide(request_id, Decision.APPROVE, actor_id, actor_role, justification)

    def reject(
        self,
        request_id: UUID,
        actor_id: str,
        actor_role: str | None,
        reason: str | None,
    ) -> ApprovalRequest:
        return self.decide(request_id, Decision.REJECT, actor_id, actor_role, reason)

    # ------------------------------------------------------------------
    # resubmit / revoke / update
    # ------------------------------------------------------------------

    def resubmit(
        self,
        request_id: UUID,
        requested_by: str,
        new_proposed_state: Any = None,
        change_summary: str | None = None,
    ) -> ApprovalRequest:
        """Reopen a REJECTED request as a new PENDING_APPROVAL cycle.

        The same row (and id) is reused; the decision fields of the previous
        cycle are cleared and survive only in the action log.
        """
        if not has_text(requested_by):
            raise InvalidApprovalPayloadError("requested_by", "must not be blank")
        state_hash = (
            _fingerprint(new_proposed_state, "new_proposed_state")
            if new_proposed_state is not None
            else None
        )

        def precheck(model: ApprovalRequestModel) -> None:
            existing = self._find_pending(model.entity_type, model.entity_id)
            if existing is not None and existing.id != model.id:
                self._reject_duplicate(model.entity_type, model.entity_id, existing.id)

        def mutate(model: ApprovalRequestModel, new_status, now: datetime) -> str:
            model.status = new_status.value
            model.decided_by = None
            model.decided_at = None
            model.rejection_reason = None
            model.requested_by = requested_by
            model.requested_at = now
            if new_proposed_state is not None:
                model.proposed_state = new_proposed_state
            if change_summary is not None:
                model.change_summary = change_summary
            return state_hash or hash_document(model.proposed_state)

        model = self._apply(
            request_id,
            ActionType.RESUBMIT,
            actor_id=requested_by,
            actor_role=None,
            justification=change_summary,
            mutate=mutate,
            precheck=precheck,
        )
        logger.info(
            "approval_resubmitted",
            extra={
                "request_id": str(request_id),
                "requested_by": requested_by,
                "state_replaced": new_proposed_state is not None,
            },
        )
        return model.to_dto()

    def revoke(
        self,
        request_id: UUID,
        actor_id: str,
        justification: str | None,
    ) -> ApprovalRequest:
        """Withdraw a pending request; it ends REJECTED with the given reason."""

        def mutate(model: ApprovalRequestModel, new_status, now: datetime) -> None:
            model.status = new_status.value
            model.decided_by = actor_id
            model.decided_at = now
            model.rejection_reason = justification

        model = self._apply(
            request_id,
            ActionType.REVOKE,
            actor_id=actor_id,
            actor_role=None,
            justification=justification,
            mutate=mutate,
        )
        logger.info(
            "approval_revoked",
            extra={"request_id": str(request_id), "revoked_by": actor_id},
        )
        return model.to_dto()

    def update_request(
        self,
        request_id: UUID,
        actor_id: str,
        proposed_state: Any,
        change_summary: str | None = None,
    ) -> ApprovalRequest:
        """Amend the proposed state of a pending request (UPDATE_REQUEST)."""
        if proposed_state is None:
            raise InvalidApprovalPayloadError("proposed_state", "is required")
        state_hash = _fingerprint(proposed_state, "proposed_state")

        def mutate(model: ApprovalRequestModel, new_status, now: datetime) -> str:
            model.proposed_state = proposed_state
            if change_summary is not None:
                model.change_summary = change_summary
            return state_hash

        model = self._apply(
            request_id,
            ActionType.UPDATE_REQUEST,
            actor_id=actor_id,
            actor_role=None,
            justification=change_summary,
            mutate=mutate,
        )
        logger.info(
            "approval_request_updated",
            extra={"request_id": str(request_id), "updated_by": actor_id},
        )
        return model.to_dto()

    # ------------------------------------------------------------------
    # purge
    # ------------------------------------------------------------------

    def purge(
        self,
        request_id: UUID,
        actor_id: str,
        actor_role: str | None,
        reason: str | None,
    ) -> PurgeRecord:
        """Administratively remove a decided request and its action log.

        A purge record is written first; the database then allows the
        request delete to cascade to its actions.
        """
        if not self._policy.is_privileged(actor_role):
            raise UnauthorizedActionError(
                str(request_id), actor_id, actor_role, PURGE_ACTION,
            )
        if not has_text(reason):
            raise MissingJustificationError(str(request_id), PURGE_ACTION)

        model = self._load_for_update(request_id)
        if model.status == ApprovalStatus.PENDING_APPROVAL.value:
            raise IllegalTransitionError(str(request_id), model.status, PURGE_ACTION)

        count, last_hash = self._action_summary(model.id)
        now = self._clock.now()
        record = ApprovalPurgeRecordModel(
            id=uuid4(),
            request_id=model.id,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            final_status=model.status,
            purged_by=actor_id,
            purged_at=now,
            reason=reason,
            action_count=count,
            last_action_hash=last_hash,
        )

        with self.savepoint() as session:
            session.add(record)
            session.flush()
            session.delete(model)
            session.flush()

        logger.warning(
            "approval_purged",
            extra={
                "request_id": str(request_id),
                "entity_type": record.entity_type,
                "entity_id": record.entity_id,
                "purged_by": actor_id,
                "action_count": count,
            },
        )
        return record.to_dto()

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _apply(
        self,
        request_id: UUID,
        action: ActionType,
        *,
        actor_id: str,
        actor_role: str | None,
        justification: str | None,
        mutate,
        precheck=None,
    ) -> ApprovalRequestModel:
        """Validate, mutate, and log one action against an existing request.

        ``mutate(model, resulting_status, now)`` applies the field changes and
        may return the state hash to record on the action.
        """
        model = self._load_for_update(request_id)
        current = ApprovalStatus(model.status)
        outcome = require_transition(
            current,
            action,
            request_id=str(request_id),
            actor_id=actor_id,
            actor_role=actor_role,
            justification=justification,
            requested_by=model.requested_by,
            policy=self._policy,
        )
        if precheck is not None:
            precheck(model)

        changes_status = outcome.rule.to_status is not None
        try:
            with self.savepoint() as session:
                now = self._clock.now()
                state_hash = mutate(model, outcome.resulting_status, now)
                model.updated_at = now
                session.flush()
                self._append_action(
                    model,
                    action,
                    actor_id=actor_id,
                    actor_role=actor_role,
                    at=now,
                    previous_status=current if changes_status else None,
                    new_status=outcome.resulting_status if changes_status else None,
                    justification=justification,
                    state_hash=state_hash,
                )
        except StaleDataError:
            latest = self._load_for_update(request_id)
            logger.warning(
                "approval_concurrent_update_lost",
                extra={
                    "request_id": str(request_id),
                    "action": action.value,
                    "current_status": latest.status,
                },
            )
            raise IllegalTransitionError(
                str(request_id), latest.status, action.value,
            ) from None
        except IntegrityError:
            if action == ActionType.RESUBMIT:
                self._classify_pending_conflict(model.entity_type, model.entity_id)
            raise
        return model

    def _append_action(
        self,
        model: ApprovalRequestModel,
        action: ActionType,
        *,
        actor_id: str,
        at: datetime,
        previous_status: ApprovalStatus | None,
        new_status: ApprovalStatus | None,
        actor_role: str | None = None,
        justification: str | None = None,
        state_hash: str | None = None,
    ) -> ApprovalActionModel:
        last = self.session.execute(
            select(ApprovalActionModel.sequence, ApprovalActionModel.hash)
            .where(ApprovalActionModel.request_id == model.id)
            .order_by(ApprovalActionModel.sequence.desc())
            .limit(1)
        ).first()
        sequence = last.sequence + 1 if last else 1
        prev_hash = last.hash if last else None

        previous_value = previous_status.value if previous_status else None
        new_value = new_status.value if new_status else None
        payload_hash = hash_action_payload(
            request_id=model.id,
            sequence=sequence,
            action_type=action.value,
            action_by=actor_id,
            actor_role=actor_role,
            action_at=at,
            justification=justification,
            previous_status=previous_value,
            new_status=new_value,
            state_hash=state_hash,
        )
        row = ApprovalActionModel(
            id=uuid4(),
            request_id=model.id,
            sequence=sequence,
            action_type=action.value,
            action_by=actor_id,
            actor_role=actor_role,
            action_at=at,
            justification=justification,
            previous_status=previous_value,
            new_status=new_value,
            state_hash=state_hash,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=hash_action(model.id, sequence, action.value, payload_hash, prev_hash),
        )
        self.session.add(row)
        self.session.flush()

        logger.debug(
            "approval_action_appended",
            extra={
                "request_id": str(model.id),
                "sequence": sequence,
                "action_type": action.value,
                "previous_status": previous_value,
                "new_status": new_value,
            },
        )
        return row

    def _load_for_update(self, request_id: UUID) -> ApprovalRequestModel:
        """Load the request row under a row lock, raise if not found."""
        model = self.session.execute(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise ApprovalNotFoundError(str(request_id))
        return model

    def _find_pending(
        self, entity_type: str, entity_id: str,
    ) -> ApprovalRequestModel | None:
        return self.session.execute(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.entity_type == entity_type,
                ApprovalRequestModel.entity_id == entity_id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING_APPROVAL.value,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _action_summary(self, request_id: UUID) -> tuple[int, str | None]:
        count = self.session.execute(
            select(func.count())
            .select_from(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
        ).scalar_one()
        last_hash = self.session.execute(
            select(ApprovalActionModel.hash)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return count, last_hash

    def _reject_duplicate(self, entity_type: str, entity_id: str, existing_id) -> None:
        logger.info(
            "duplicate_pending_request_rejected",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "existing_request_id": str(existing_id),
            },
        )
        raise DuplicatePendingRequestError(entity_type, entity_id, str(existing_id))

    def _classify_pending_conflict(self, entity_type: str, entity_id: str) -> None:
        """After an IntegrityError: was it the one-pending-per-entity index?

        The competing transaction has committed by the time the unique index
        rejects our row, so a fresh read finds it.
        """
        existing = self._find_pending(entity_type, entity_id)
        if existing is not None:
            self._reject_duplicate(entity_type, entity_id, existing.id)

"""
Module: approval_kernel.selectors.approval_selector
Responsibility: Read-side projections over approval requests and their
    action log: pending work, per-entity history, and chain verification.
Architecture position: Kernel > Selectors.  Read-only; returns frozen DTOs.

Invariants enforced:
    - Deterministic order: requests newest first (requested_at DESC, id DESC);
      actions by ascending per-request sequence.
    - Snapshot reads: each returned DTO is a deep copy and never aliases ORM
      state.

Failure modes:
    - ApprovalNotFoundError from get_request() for an unknown id.
    - EntityHistoryNotFoundError from history() when the entity has no
      requests.

Audit relevance:
    verify_action_chain() recomputes every payload hash and chain link and
    replays the status path, so tampering outside the kernel is detectable
    even where database triggers were bypassed.  assert_action_chain() is
    the raising variant.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.orm import selectinload

from approval_kernel.domain.approval import (
    ActionType,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
    EntityType,
    PendingApproval,
    PurgeRecord,
    RequestHistory,
)
from approval_kernel.domain.transitions import replay_status_path
from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    AuditChainBrokenError,
    EntityHistoryNotFoundError,
    HistoryInconsistentError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import (
    ApprovalActionModel,
    ApprovalPurgeRecordModel,
    ApprovalRequestModel,
)
from approval_kernel.selectors.base import BaseSelector
from approval_kernel.utils.hashing import hash_action, hash_action_payload

logger = get_logger("selectors.approval")

DEFAULT_PENDING_BATCH_SIZE = 100


@dataclass(frozen=True)
class ChainVerification:
    """Outcome of verifying one request's action log."""

    request_id: UUID
    action_count: int
    is_valid: bool
    final_status: ApprovalStatus | None = None
    errors: tuple[str, ...] = field(default_factory=tuple)


def _value(tag) -> str:
    return tag.value if hasattr(tag, "value") else tag


def _recompute_payload_hash(action: ApprovalActionRecord) -> str:
    return hash_action_payload(
        request_id=action.request_id,
        sequence=action.sequence,
        action_type=action.action_type.value,
        action_by=action.action_by,
        actor_role=action.actor_role,
        action_at=action.action_at,
        justification=action.justification,
        previous_status=_value(action.previous_status) if action.previous_status else None,
        new_status=_value(action.new_status) if action.new_status else None,
        state_hash=action.state_hash,
    )


class ApprovalSelector(BaseSelector[ApprovalRequestModel]):
    """Read-only queries for approval requests.

    Non-goals:
        No pagination cursors; iter_pending() streams in batches instead.
    """

    # ------------------------------------------------------------------
    # single request
    # ------------------------------------------------------------------

    def find_request(self, request_id: UUID) -> ApprovalRequest | None:
        model = self._read(
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.id == request_id)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        request = self.find_request(request_id)
        if request is None:
            raise ApprovalNotFoundError(str(request_id))
        return request

    def get_actions(self, request_id: UUID) -> tuple[ApprovalActionRecord, ...]:
        """All actions for a request in sequence order."""
        rows = self._read(
            select(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.sequence)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    # ------------------------------------------------------------------
    # pending work
    # ------------------------------------------------------------------

    def _pending_query(self):
        last_seq = (
            select(
                ApprovalActionModel.request_id.label("request_id"),
                func.max(ApprovalActionModel.sequence).label("max_seq"),
            )
            .group_by(ApprovalActionModel.request_id)
            .subquery()
        )
        return (
            select(
                ApprovalRequestModel,
                ApprovalActionModel.action_type,
                ApprovalActionModel.action_at,
            )
            .outerjoin(last_seq, last_seq.c.request_id == ApprovalRequestModel.id)
            .outerjoin(
                ApprovalActionModel,
                and_(
                    ApprovalActionModel.request_id == ApprovalRequestModel.id,
                    ApprovalActionModel.sequence == last_seq.c.max_seq,
                ),
            )
            .where(
                ApprovalRequestModel.status == ApprovalStatus.PENDING_APPROVAL.value
            )
            .order_by(
                ApprovalRequestModel.requested_at.desc(),
                ApprovalRequestModel.id.desc(),
            )
        )

    @staticmethod
    def _to_pending(model, action_type, action_at) -> PendingApproval:
        return PendingApproval(
            request=model.to_dto(),
            last_action_type=ActionType(action_type) if action_type else None,
            last_action_at=action_at,
        )

    def iter_pending(
        self,
        batch_size: int = DEFAULT_PENDING_BATCH_SIZE,
        entity_type: EntityType | str | None = None,
    ) -> Iterator[PendingApproval]:
        """Stream pending requests, newest first, with their latest action.

        Rows are fetched ``batch_size`` at a time; the full result is never
        materialised.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        stmt = self._pending_query()
        if entity_type is not None:
            stmt = stmt.where(ApprovalRequestModel.entity_type == _value(entity_type))
        result = self._read(stmt, yield_per=batch_size)
        for model, action_type, action_at in result:
            yield self._to_pending(model, action_type, action_at)

    def pending_by_type(
        self, entity_type: EntityType | str,
    ) -> tuple[PendingApproval, ...]:
        return tuple(self.iter_pending(entity_type=entity_type))

    def pending_for_entity(
        self, entity_type: EntityType | str, entity_id: str,
    ) -> ApprovalRequest | None:
        """The entity's single pending request, if any."""
        model = self._read(
            select(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.entity_type == _value(entity_type),
                ApprovalRequestModel.entity_id == entity_id,
                ApprovalRequestModel.status == ApprovalStatus.PENDING_APPROVAL.value,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def has_pending(self, entity_type: EntityType | str, entity_id: str) -> bool:
        return self.pending_for_entity(entity_type, entity_id) is not None

    def count_pending(self, entity_type: EntityType | str | None = None) -> int:
        stmt = (
            select(func.count())
            .select_from(ApprovalRequestModel)
            .where(
                ApprovalRequestModel.status == ApprovalStatus.PENDING_APPROVAL.value
            )
        )
        if entity_type is not None:
            stmt = stmt.where(ApprovalRequestModel.entity_type == _value(entity_type))
        return self.session.execute(stmt).scalar_one()

    def list_by_status(
        self,
        status: ApprovalStatus | str,
        entity_type: EntityType | str | None = None,
        limit: int | None = None,
    ) -> tuple[ApprovalRequest, ...]:
        stmt = (
            select(ApprovalRequestModel)
            .where(ApprovalRequestModel.status == _value(status))
            .order_by(
                ApprovalRequestModel.requested_at.desc(),
                ApprovalRequestModel.id.desc(),
            )
        )
        if entity_type is not None:
            stmt = stmt.where(ApprovalRequestModel.entity_type == _value(entity_type))
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = self._read(stmt).scalars()
        return tuple(row.to_dto() for row in rows)

    # ------------------------------------------------------------------
    # history
    # ------------------------------------------------------------------

    def _histories(self, stmt) -> tuple[RequestHistory, ...]:
        rows = self._read(
            stmt.options(selectinload(ApprovalRequestModel.actions))
            .order_by(
                ApprovalRequestModel.requested_at.desc(),
                ApprovalRequestModel.id.desc(),
            )
        ).scalars()
        return tuple(
            RequestHistory(
                request=row.to_dto(),
                actions=tuple(action.to_dto() for action in row.actions),
            )
            for row in rows
        )

    def history(
        self, entity_type: EntityType | str, entity_id: str,
    ) -> tuple[RequestHistory, ...]:
        """Every request ever raised for an entity, newest first, with actions."""
        histories = self._histories(
            select(ApprovalRequestModel).where(
                ApprovalRequestModel.entity_type == _value(entity_type),
                ApprovalRequestModel.entity_id == entity_id,
            )
        )
        if not histories:
            raise EntityHistoryNotFoundError(_value(entity_type), entity_id)
        return histories

    def history_for_entity_type(
        self, entity_type: EntityType | str, limit: int | None = None,
    ) -> tuple[RequestHistory, ...]:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.entity_type == _value(entity_type)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self._histories(stmt)

    # ------------------------------------------------------------------
    # audit
    # ------------------------------------------------------------------

    def verify_action_chain(self, request_id: UUID) -> ChainVerification:
        """Recompute hashes and replay the status path for one request."""
        request = self.get_request(request_id)
        actions = self.get_actions(request_id)
        errors: list[str] = []

        prev_hash: str | None = None
        for action in actions:
            if _recompute_payload_hash(action) != action.payload_hash:
                errors.append(f"action #{action.sequence}: payload hash mismatch")
            if action.prev_hash != prev_hash:
                errors.append(f"action #{action.sequence}: broken link to previous action")
            expected = hash_action(
                action.request_id,
                action.sequence,
                action.action_type.value,
                action.payload_hash,
                action.prev_hash,
            )
            if expected != action.hash:
                errors.append(f"action #{action.sequence}: chain hash mismatch")
            prev_hash = action.hash

        final_status: ApprovalStatus | None = None
        try:
            final_status = replay_status_path(actions)
        except HistoryInconsistentError as exc:
            errors.append(str(exc))
        else:
            if final_status != request.status:
                errors.append(
                    f"replayed status {final_status} does not match "
                    f"stored status {request.status.value}"
                )

        verification = ChainVerification(
            request_id=request.request_id,
            action_count=len(actions),
            is_valid=not errors,
            final_status=final_status,
            errors=tuple(errors),
        )
        if errors:
            logger.warning(
                "approval_chain_verification_failed",
                extra={"request_id": str(request_id), "errors": list(errors)},
            )
        return verification

    def assert_action_chain(self, request_id: UUID) -> ApprovalStatus | None:
        """Strict form of verify_action_chain().

        Returns the replayed status, or raises on the first defect:
        AuditChainBrokenError for a hash or link mismatch,
        HistoryInconsistentError for an illegal status path.
        """
        request = self.get_request(request_id)
        actions = self.get_actions(request_id)
        prev_hash: str | None = None
        for action in actions:
            expected = hash_action(
                action.request_id,
                action.sequence,
                action.action_type.value,
                _recompute_payload_hash(action),
                prev_hash,
            )
            if expected != action.hash:
                raise AuditChainBrokenError(str(action.action_id), expected, action.hash)
            prev_hash = action.hash
        final_status = replay_status_path(actions)
        if final_status != request.status:
            raise HistoryInconsistentError(
                str(request_id),
                len(actions),
                f"replayed status {final_status} does not match "
                f"stored status {request.status.value}",
            )
        return final_status

    def purge_log(
        self, entity_type: EntityType | str | None = None,
    ) -> tuple[PurgeRecord, ...]:
        stmt = select(ApprovalPurgeRecordModel).order_by(
            ApprovalPurgeRecordModel.purged_at.desc(),
            ApprovalPurgeRecordModel.id.desc(),
        )
        if entity_type is not None:
            stmt = stmt.where(
                ApprovalPurgeRecordModel.entity_type == _value(entity_type)
            )
        return tuple(row.to_dto() for row in self._read(stmt).scalars())

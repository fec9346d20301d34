"""
approval_services.approval_orchestrator -- Transactional facade over the kernel.

Responsibility:
    Wires ApprovalManager and ApprovalSelector on one session and owns the
    transaction boundary: every mutating operation commits on success and
    rolls back on failure (when ``auto_commit=True``).  This is the API the
    CLI and host applications call.

Architecture position:
    Services -- sits above approval_kernel and approval_config.  The only
    layer that commits.

Invariants enforced:
    - Atomicity: a request mutation and its action row commit together or
      not at all.
    - Error surface: callers only ever see ApprovalKernelError subclasses;
      unclassified SQLAlchemyError is rolled back and re-raised as
      ApprovalStorageError.

Failure modes:
    - Any kernel error (see approval_kernel.exceptions), after rollback.
    - ApprovalStorageError for storage failures the kernel cannot classify.

Audit relevance:
    Each operation runs under a fresh correlation_id and logs
    ``<operation>_started`` / ``<operation>_completed`` with duration_ms, or
    ``<operation>_rejected`` / ``<operation>_failed``.

Usage:
    orchestrator = ApprovalOrchestrator.from_config(session, config)
    request = orchestrator.submit_approval(
        "DASHBOARD", "dash-17", "UPDATE", {"title": "Latency"}, requested_by="alice",
    )
    orchestrator.decide(request.request_id, "APPROVE", "bob", "ADMIN")
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from approval_config.bridges import build_workflow_policy
from approval_config.schema import ApprovalEngineConfig
from approval_kernel.domain.approval import (
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
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.exceptions import ApprovalError, ApprovalStorageError
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.selectors.approval_selector import (
    DEFAULT_PENDING_BATCH_SIZE,
    ApprovalSelector,
    ChainVerification,
)
from approval_kernel.services.approval_manager import ApprovalManager

logger = get_logger("services.approval_orchestrator")

T = TypeVar("T")


class ApprovalOrchestrator:
    """Public entry point for the approval workflow.

    Contract:
        Receives a Session plus optional WorkflowPolicy and Clock.  Builds
        one ApprovalManager and one ApprovalSelector sharing them.

    Guarantees:
        - With ``auto_commit=True`` each mutating call is its own
          transaction.
        - With ``auto_commit=False`` the caller owns commit/rollback and the
          orchestrator only flushes (through the manager).

    Non-goals:
        - Does NOT own the Session lifecycle (no close()).
        - Does NOT apply approved state to the governed entity.
    """

    def __init__(
        self,
        session: Session,
        policy: WorkflowPolicy | None = None,
        clock: Clock | None = None,
        auto_commit: bool = True,
        pending_batch_size: int = DEFAULT_PENDING_BATCH_SIZE,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._auto_commit = auto_commit
        self._pending_batch_size = pending_batch_size
        self.manager = ApprovalManager(session, clock=self._clock, policy=policy)
        self.selector = ApprovalSelector(session)

    @classmethod
    def from_config(
        cls,
        session: Session,
        config: ApprovalEngineConfig,
        clock: Clock | None = None,
        auto_commit: bool = True,
    ) -> ApprovalOrchestrator:
        return cls(
            session,
            policy=build_workflow_policy(config),
            clock=clock,
            auto_commit=auto_commit,
            pending_batch_size=config.workflow.pending_batch_size,
        )

    @property
    def policy(self) -> WorkflowPolicy:
        return self.manager.policy

    # ------------------------------------------------------------------
    # transaction wrapper
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[], T],
        *,
        request_id: UUID | None = None,
        actor_id: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> T:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            operation=operation,
            request_id=str(request_id) if request_id is not None else None,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
        ):
            logger.info(f"{operation}_started")
            t0 = time.monotonic()
            try:
                result = work()
                if self._auto_commit:
                    self._session.commit()
            except ApprovalError as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self._session.rollback()
                logger.warning(
                    f"{operation}_rejected",
                    extra={"duration_ms": duration_ms, "error_code": exc.code},
                )
                raise
            except SQLAlchemyError as exc:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                detail = str(getattr(exc, "orig", None) or exc)
                raise ApprovalStorageError(operation, detail) from exc
            except Exception:
                duration_ms = round((time.monotonic() - t0) * 1000, 2)
                if self._auto_commit:
                    self._session.rollback()
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": duration_ms},
                    exc_info=True,
                )
                raise

            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(f"{operation}_completed", extra={"duration_ms": duration_ms})
            return result

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------

    def submit_approval(
        self,
        entity_type: EntityType | str,
        entity_id: str,
        request_type: RequestType | str,
        proposed_state: Any,
        requested_by: str,
        current_state: Any = None,
        source: RequestSource | str | None = None,
        label: str | None = None,
        summary: str | None = None,
        extra_data: Any = None,
    ) -> ApprovalRequest:
        """Open a pending request for an entity."""
        return self._run(
            "approval_submit",
            lambda: self.manager.submit(
                entity_type,
                entity_id,
                request_type,
                proposed_state,
                requested_by,
                current_state=current_state,
                source=source,
                source_label=label,
                change_summary=summary,
                extra_data=extra_data,
            ),
            actor_id=requested_by,
            entity_type=str(getattr(entity_type, "value", entity_type)),
            entity_id=entity_id,
        )

    def decide(
        self,
        request_id: UUID,
        decision: Decision | str,
        actor_id: str,
        actor_role: str | None,
        justification: str | None = None,
    ) -> ApprovalRequest:
        """Approve or reject a pending request."""
        return self._run(
            "approval_decide",
            lambda: self.manager.decide(
                request_id, decision, actor_id, actor_role, justification,
            ),
            request_id=request_id,
            actor_id=actor_id,
        )

    def resubmit(
        self,
        request_id: UUID,
        requested_by: str,
        new_proposed_state: Any = None,
        change_summary: str | None = None,
    ) -> ApprovalRequest:
        return self._run(
            "approval_resubmit",
            lambda: self.manager.resubmit(
                request_id,
                requested_by,
                new_proposed_state=new_proposed_state,
                change_summary=change_summary,
            ),
            request_id=request_id,
            actor_id=requested_by,
        )

    def revoke(
        self,
        request_id: UUID,
        actor_id: str,
        justification: str | None,
    ) -> ApprovalRequest:
        return self._run(
            "approval_revoke",
            lambda: self.manager.revoke(request_id, actor_id, justification),
            request_id=request_id,
            actor_id=actor_id,
        )

    def update_request(
        self,
        request_id: UUID,
        actor_id: str,
        proposed_state: Any,
        change_summary: str | None = None,
    ) -> ApprovalRequest:
        return self._run(
            "approval_update",
            lambda: self.manager.update_request(
                request_id, actor_id, proposed_state, change_summary,
            ),
            request_id=request_id,
            actor_id=actor_id,
        )

    def purge(
        self,
        request_id: UUID,
        actor_id: str,
        actor_role: str | None,
        reason: str | None,
    ) -> PurgeRecord:
        return self._run(
            "approval_purge",
            lambda: self.manager.purge(request_id, actor_id, actor_role, reason),
            request_id=request_id,
            actor_id=actor_id,
        )

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def list_pending(
        self, entity_type: EntityType | str | None = None,
    ) -> Iterator[PendingApproval]:
        """Lazily stream pending requests, newest first."""
        return self.selector.iter_pending(
            batch_size=self._pending_batch_size, entity_type=entity_type,
        )

    def history(
        self, entity_type: EntityType | str, entity_id: str,
    ) -> tuple[RequestHistory, ...]:
        return self.selector.history(entity_type, entity_id)

    def history_for_entity_type(
        self, entity_type: EntityType | str, limit: int | None = None,
    ) -> tuple[RequestHistory, ...]:
        return self.selector.history_for_entity_type(entity_type, limit=limit)

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        return self.selector.get_request(request_id)

    def get_actions(self, request_id: UUID) -> tuple[ApprovalActionRecord, ...]:
        return self.selector.get_actions(request_id)

    def pending_for_entity(
        self, entity_type: EntityType | str, entity_id: str,
    ) -> ApprovalRequest | None:
        return self.selector.pending_for_entity(entity_type, entity_id)

    def has_pending(self, entity_type: EntityType | str, entity_id: str) -> bool:
        return self.selector.has_pending(entity_type, entity_id)

    def count_pending(self, entity_type: EntityType | str | None = None) -> int:
        return self.selector.count_pending(entity_type)

    def list_approved(
        self, entity_type: EntityType | str | None = None, limit: int | None = None,
    ) -> tuple[ApprovalRequest, ...]:
        return self.selector.list_by_status(
            ApprovalStatus.APPROVED, entity_type=entity_type, limit=limit,
        )

    def verify_action_chain(self, request_id: UUID) -> ChainVerification:
        return self.selector.verify_action_chain(request_id)

    def assert_action_chain(self, request_id: UUID) -> ApprovalStatus | None:
        return self.selector.assert_action_chain(request_id)

    def purge_log(
        self, entity_type: EntityType | str | None = None,
    ) -> tuple[PurgeRecord, ...]:
        return self.selector.purge_log(entity_type)

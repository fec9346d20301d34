"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests, their append-only
    action log, and the purge log.

Architecture position: Kernel > Models.  May import from db/ and domain/
    (enum tags and DTOs).

Invariants enforced:
    - One pending request per entity: partial UNIQUE index on
      (entity_type, entity_id) WHERE status = 'PENDING_APPROVAL', declared
      for both PostgreSQL and SQLite.
    - Closed tag sets: CHECK constraints on status, request_type,
      entity_type, source, action_type.
    - rejection_reason is non-blank iff status = REJECTED.
    - decided_by/decided_at are set iff status is terminal.
    - CREATE requests carry no current_state.
    - REJECT/REVOKE actions carry a non-blank justification.
    - Action order: UNIQUE(request_id, sequence).
    - Lost updates: version counter (mapper version_id_col).

Failure modes:
    - IntegrityError on a second pending request for the same entity.
    - IntegrityError on a CHECK violation (service layer validates first).
    - StaleDataError when a concurrent transaction changed the request
      row between load and flush.

Audit relevance:
    Actions are append-only and hash-chained per request.  Deleting a
    request cascades to its actions at the database level only after a
    purge record has been written (see db/immutability.py and db/sql/).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from approval_kernel.db.base import Base, UUIDString
from approval_kernel.db.types import JSONDocument
from approval_kernel.domain.approval import (
    ActionType,
    ApprovalActionRecord,
    ApprovalRequest,
    ApprovalStatus,
    EntityType,
    PurgeRecord,
    RequestSource,
    RequestType,
)


def _in_list(column: str, enum_cls, nullable: bool = False) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    clause = f"{column} IN ({values})"
    if nullable:
        return f"{column} IS NULL OR {clause}"
    return clause


PENDING_ONLY = text("status = 'PENDING_APPROVAL'")


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        Status transitions are validated by domain/transitions.py before
        any mutation.  APPROVED rows are frozen.

    Guarantees:
        - At most one PENDING_APPROVAL row per (entity_type, entity_id).
        - Decision fields are consistent with status (CHECK constraints).
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            _in_list("status", ApprovalStatus),
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint(
            _in_list("request_type", RequestType),
            name="ck_approval_requests_valid_request_type",
        ),
        CheckConstraint(
            _in_list("entity_type", EntityType),
            name="ck_approval_requests_valid_entity_type",
        ),
        CheckConstraint(
            _in_list("source", RequestSource, nullable=True),
            name="ck_approval_requests_valid_source",
        ),
        CheckConstraint(
            "length(trim(entity_id)) > 0",
            name="ck_approval_requests_entity_id_not_blank",
        ),
        CheckConstraint(
            "(status = 'REJECTED' AND rejection_reason IS NOT NULL "
            "AND length(trim(rejection_reason)) > 0) "
            "OR (status <> 'REJECTED' AND rejection_reason IS NULL)",
            name="ck_approval_requests_rejection_reason",
        ),
        CheckConstraint(
            "(status = 'PENDING_APPROVAL' AND decided_by IS NULL "
            "AND decided_at IS NULL) "
            "OR (status <> 'PENDING_APPROVAL' AND decided_by IS NOT NULL "
            "AND decided_at IS NOT NULL)",
            name="ck_approval_requests_decision_fields",
        ),
        CheckConstraint(
            "request_type <> 'CREATE' OR current_state IS NULL",
            name="ck_approval_requests_create_has_no_current_state",
        ),
        Index(
            "uq_approval_requests_one_pending",
            "entity_type",
            "entity_id",
            unique=True,
            postgresql_where=PENDING_ONLY,
            sqlite_where=PENDING_ONLY,
        ),
        Index(
            "ix_approval_requests_status_requested_at",
            "status",
            "requested_at",
        ),
        Index(
            "ix_approval_requests_entity",
            "entity_type",
            "entity_id",
            "requested_at",
        ),
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    request_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), nullable=False, default=ApprovalStatus.PENDING_APPROVAL.value,
    )
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    proposed_state: Mapped[Any] = mapped_column(JSONDocument, nullable=False)
    current_state: Mapped[Any | None] = mapped_column(JSONDocument, nullable=True)
    change_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    extra_data: Mapped[Any | None] = mapped_column(JSONDocument, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    actions: Mapped[list["ApprovalActionModel"]] = relationship(
        "ApprovalActionModel",
        back_populates="request",
        order_by="ApprovalActionModel.sequence",
        passive_deletes="all",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.id} "
            f"{self.entity_type}/{self.entity_id} "
            f"{self.request_type} status={self.status}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalRequest(
            request_id=self.id,
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            request_type=RequestType(self.request_type),
            status=ApprovalStatus(self.status),
            requested_by=self.requested_by,
            requested_at=self.requested_at,
            proposed_state=self.proposed_state,
            current_state=self.current_state,
            change_summary=self.change_summary,
            source=RequestSource(self.source) if self.source else None,
            source_label=self.source_label,
            extra_data=self.extra_data,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
            rejection_reason=self.rejection_reason,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )


class ApprovalActionModel(Base):
    """Persistent approval action. Append-only.

    Contract:
        Rows are written once by the approval manager and never updated or
        deleted (ORM listeners and database triggers).

    Guarantees:
        - UNIQUE(request_id, sequence) gives a total order per request.
        - hash = H(request_id | sequence | action_type | payload_hash | prev_hash).
    """

    __tablename__ = "approval_actions"

    __table_args__ = (
        UniqueConstraint(
            "request_id", "sequence",
            name="uq_approval_actions_request_sequence",
        ),
        CheckConstraint(
            _in_list("action_type", ActionType),
            name="ck_approval_actions_valid_action_type",
        ),
        CheckConstraint(
            _in_list("previous_status", ApprovalStatus, nullable=True),
            name="ck_approval_actions_valid_previous_status",
        ),
        CheckConstraint(
            _in_list("new_status", ApprovalStatus, nullable=True),
            name="ck_approval_actions_valid_new_status",
        ),
        CheckConstraint(
            "action_type NOT IN ('REJECT', 'REVOKE') "
            "OR (justification IS NOT NULL AND length(trim(justification)) > 0)",
            name="ck_approval_actions_justification_required",
        ),
        CheckConstraint("sequence >= 1", name="ck_approval_actions_sequence_positive"),
        Index("ix_approval_actions_action_at", "action_at"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_by: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action_at: Mapped[datetime] = mapped_column(nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    new_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    state_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    request: Mapped["ApprovalRequestModel"] = relationship(
        "ApprovalRequestModel",
        back_populates="actions",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalAction {self.id} request={self.request_id} "
            f"#{self.sequence} {self.action_type}>"
        )

    def to_dto(self) -> ApprovalActionRecord:
        """Convert ORM model to frozen domain DTO."""
        return ApprovalActionRecord(
            action_id=self.id,
            request_id=self.request_id,
            sequence=self.sequence,
            action_type=ActionType(self.action_type),
            action_by=self.action_by,
            action_at=self.action_at,
            previous_status=(
                ApprovalStatus(self.previous_status) if self.previous_status else None
            ),
            new_status=ApprovalStatus(self.new_status) if self.new_status else None,
            justification=self.justification,
            actor_role=self.actor_role,
            state_hash=self.state_hash,
            payload_hash=self.payload_hash,
            prev_hash=self.prev_hash,
            hash=self.hash,
        )


class ApprovalPurgeRecordModel(Base):
    """Append-only trace of an administrative purge.

    Contract:
        Written before the purged request is deleted.  Its existence is what
        allows the database to cascade-delete that request's actions.
    """

    __tablename__ = "approval_purge_log"

    __table_args__ = (
        UniqueConstraint("request_id", name="uq_approval_purge_log_request"),
        CheckConstraint(
            "length(trim(reason)) > 0",
            name="ck_approval_purge_log_reason_not_blank",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    final_status: Mapped[str] = mapped_column(String(50), nullable=False)
    purged_by: Mapped[str] = mapped_column(String(255), nullable=False)
    purged_at: Mapped[datetime] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    action_count: Mapped[int] = mapped_column(nullable=False)
    last_action_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<ApprovalPurgeRecord request={self.request_id} by={self.purged_by}>"

    def to_dto(self) -> PurgeRecord:
        return PurgeRecord(
            purge_id=self.id,
            request_id=self.request_id,
            entity_type=EntityType(self.entity_type),
            entity_id=self.entity_id,
            final_status=ApprovalStatus(self.final_status),
            purged_by=self.purged_by,
            purged_at=self.purged_at,
            reason=self.reason,
            action_count=self.action_count,
            last_action_hash=self.last_action_hash,
        )

"""
Tests for ApprovalManager -- approval lifecycle management.

Covers:
- submit(): happy path, one-pending-per-entity, payload validation
- decide()/approve()/reject(): privilege, self-decision, justification,
  terminal APPROVED, unknown id
- resubmit(): same row reopened, decision fields cleared, pending conflict
- revoke(): withdrawal ends REJECTED with a reason
- update_request(): proposed state amended without a status change
- purge(): privileged removal of decided requests, purge record written
- race recovery: unique-index and version conflicts surface as typed errors
- Every successful mutation appends exactly one action; every failure
  appends none.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from approval_kernel.domain.approval import (
    ActionType,
    ApprovalStatus,
    EntityType,
    RequestType,
)
from approval_kernel.exceptions import (
    ApprovalNotFoundError,
    DuplicatePendingRequestError,
    IllegalTransitionError,
    InvalidApprovalPayloadError,
    MissingJustificationError,
    UnauthorizedActionError,
)
from approval_kernel.models.approval import (
    ApprovalActionModel,
    ApprovalPurgeRecordModel,
    ApprovalRequestModel,
)
from approval_kernel.utils.hashing import hash_document
from tests.conftest import ADMIN_ROLE, APPROVER, REQUESTER

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def action_count(session, request_id) -> int:
    return session.execute(
        select(func.count())
        .select_from(ApprovalActionModel)
        .where(ApprovalActionModel.request_id == request_id)
    ).scalar_one()


def actions_for(session, request_id) -> list[ApprovalActionModel]:
    return list(
        session.execute(
            select(ApprovalActionModel)
            .where(ApprovalActionModel.request_id == request_id)
            .order_by(ApprovalActionModel.sequence)
        ).scalars()
    )


def pending_count(session, entity_type, entity_id) -> int:
    return session.execute(
        select(func.count())
        .select_from(ApprovalRequestModel)
        .where(
            ApprovalRequestModel.entity_type == entity_type,
            ApprovalRequestModel.entity_id == entity_id,
            ApprovalRequestModel.status == "PENDING_APPROVAL",
        )
    ).scalar_one()


# =========================================================================
# submit
# =========================================================================


class TestSubmit:
    def test_submit_creates_pending_request(self, submit_request, session, deterministic_clock):
        request = submit_request("dash-1")

        assert request.status is ApprovalStatus.PENDING_APPROVAL
        assert request.entity_type is EntityType.DASHBOARD
        assert request.request_type is RequestType.UPDATE
        assert request.requested_by == REQUESTER
        assert request.requested_at == deterministic_clock.now()
        assert request.decided_by is None
        assert request.rejection_reason is None
        assert request.version == 1

    def test_submit_appends_submit_action(self, submit_request, session):
        request = submit_request("dash-1")

        actions = actions_for(session, request.request_id)
        assert len(actions) == 1
        submit = actions[0]
        assert submit.sequence == 1
        assert submit.action_type == "SUBMIT"
        assert submit.previous_status is None
        assert submit.new_status == "PENDING_APPROVAL"
        assert submit.prev_hash is None
        assert submit.state_hash == hash_document(request.proposed_state)

    def test_create_request_without_current_state(self, submit_request):
        request = submit_request("dash-new", request_type="CREATE", proposed_state={"title": "New"})
        assert request.request_type is RequestType.CREATE
        assert request.current_state is None

    def test_submit_records_source_and_extra_data(self, submit_request):
        request = submit_request(
            "dash-1",
            source="IMPORT",
            source_label="bulk-2024-01",
            change_summary="imported from staging",
            extra_data={"ticket": "OPS-12"},
        )
        assert request.source.value == "IMPORT"
        assert request.source_label == "bulk-2024-01"
        assert request.change_summary == "imported from staging"
        assert request.extra_data == {"ticket": "OPS-12"}

    def test_second_pending_for_same_entity_rejected(self, submit_request, session):
        first = submit_request("dash-1")

        with pytest.raises(DuplicatePendingRequestError) as exc_info:
            submit_request("dash-1")

        assert exc_info.value.existing_request_id == str(first.request_id)
        assert pending_count(session, "DASHBOARD", "dash-1") == 1

    def test_same_id_different_entity_type_is_independent(self, submit_request):
        submit_request("shared-7", entity_type="DASHBOARD")
        other = submit_request("shared-7", entity_type="CHART")
        assert other.is_pending

    def test_new_request_allowed_after_approval(self, submit_request, manager):
        first = submit_request("dash-1")
        manager.approve(first.request_id, APPROVER, ADMIN_ROLE)

        second = submit_request("dash-1")
        assert second.request_id != first.request_id
        assert second.is_pending

    @pytest.mark.parametrize(
        "kwargs, field",
        [
            ({"entity_type": "ROLE"}, "entity_type"),
            ({"request_type": "MERGE"}, "request_type"),
            ({"entity_id": "   "}, "entity_id"),
            ({"requested_by": ""}, "requested_by"),
            ({"source": "FAX"}, "source"),
        ],
    )
    def test_invalid_submission_fields(self, manager, session, kwargs, field):
        args = dict(
            entity_type="DASHBOARD",
            entity_id="dash-1",
            request_type="UPDATE",
            proposed_state={"title": "x"},
            requested_by=REQUESTER,
        )
        args.update(kwargs)

        with pytest.raises(InvalidApprovalPayloadError) as exc_info:
            manager.submit(**args)

        assert exc_info.value.field == field
        assert session.execute(
            select(func.count()).select_from(ApprovalRequestModel)
        ).scalar_one() == 0

    def test_missing_proposed_state(self, manager):
        with pytest.raises(InvalidApprovalPayloadError):
            manager.submit("DASHBOARD", "dash-1", "UPDATE", None, REQUESTER)

    def test_create_with_current_state_rejected(self, manager):
        with pytest.raises(InvalidApprovalPayloadError) as exc_info:
            manager.submit(
                "DASHBOARD", "dash-1", "CREATE", {"title": "x"}, REQUESTER,
                current_state={"title": "old"},
            )
        assert exc_info.value.field == "current_state"

    def test_non_json_document_rejected(self, manager):
        with pytest.raises(InvalidApprovalPayloadError):
            manager.submit("DASHBOARD", "dash-1", "UPDATE", {"bad": object()}, REQUESTER)

    def test_submit_logs_event(self, submit_request, captured_logs):
        request = submit_request("dash-1")
        records = [r for r in captured_logs() if r["message"] == "approval_submitted"]
        assert len(records) == 1
        assert records[0]["request_id"] == str(request.request_id)
        assert records[0]["entity_id"] == "dash-1"


# =========================================================================
# decisions
# =========================================================================


class TestDecide:
    def test_approve(self, submit_request, manager, session, deterministic_clock):
        request = submit_request("dash-1")
        deterministic_clock.tick()

        approved = manager.approve(request.request_id, APPROVER, ADMIN_ROLE)

        assert approved.status is ApprovalStatus.APPROVED
        assert approved.decided_by == APPROVER
        assert approved.decided_at == deterministic_clock.now()
        assert approved.version == 2

        actions = actions_for(session, request.request_id)
        assert [a.action_type for a in actions] == ["SUBMIT", "APPROVE"]
        assert actions[1].previous_status == "PENDING_APPROVAL"
        assert actions[1].new_status == "APPROVED"
        assert actions[1].actor_role == ADMIN_ROLE

    def test_reject_records_reason(self, submit_request, manager, session):
        request = submit_request("dash-1")

        rejected = manager.reject(request.request_id, APPROVER, ADMIN_ROLE, "panels missing")

        assert rejected.status is ApprovalStatus.REJECTED
        assert rejected.rejection_reason == "panels missing"
        assert actions_for(session, request.request_id)[-1].justification == "panels missing"

    def test_decide_accepts_string_decision(self, submit_request, manager):
        request = submit_request("dash-1")
        result = manager.decide(request.request_id, "APPROVE", APPROVER, ADMIN_ROLE)
        assert result.status is ApprovalStatus.APPROVED

    def test_unknown_decision(self, submit_request, manager):
        request = submit_request("dash-1")
        with pytest.raises(InvalidApprovalPayloadError):
            manager.decide(request.request_id, "ESCALATE", APPROVER, ADMIN_ROLE)

    def test_role_is_case_insensitive(self, submit_request, manager):
        request = submit_request("dash-1")
        result = manager.approve(request.request_id, APPROVER, "admin")
        assert result.status is ApprovalStatus.APPROVED

    @pytest.mark.parametrize("role", ["VIEWER", None, ""])
    def test_unprivileged_actor_refused(self, submit_request, manager, session, role):
        request = submit_request("dash-1")

        with pytest.raises(UnauthorizedActionError):
            manager.approve(request.request_id, "carol", role)

        assert manager.session.get(ApprovalRequestModel, request.request_id).status == (
            "PENDING_APPROVAL"
        )
        assert action_count(session, request.request_id) == 1

    def test_requester_cannot_decide_own_request(self, submit_request, manager):
        request = submit_request("dash-1", requested_by="alice")
        with pytest.raises(UnauthorizedActionError) as exc_info:
            manager.approve(request.request_id, "alice", ADMIN_ROLE)
        assert "own request" in exc_info.value.reason

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reject_without_reason(self, submit_request, manager, session, reason):
        request = submit_request("dash-1")

        with pytest.raises(MissingJustificationError):
            manager.reject(request.request_id, APPROVER, ADMIN_ROLE, reason)

        assert action_count(session, request.request_id) == 1

    def test_approved_is_terminal(self, submit_request, manager, session):
        request = submit_request("dash-1")
        manager.approve(request.request_id, APPROVER, ADMIN_ROLE)

        with pytest.raises(IllegalTransitionError) as exc_info:
            manager.reject(request.request_id, APPROVER, ADMIN_ROLE, "changed my mind")

        assert exc_info.value.current_status == "APPROVED"
        with pytest.raises(IllegalTransitionError):
            manager.approve(request.request_id, APPROVER, ADMIN_ROLE)
        assert action_count(session, request.request_id) == 2

    def test_illegal_reported_before_unauthorized(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.approve(request.request_id, APPROVER, ADMIN_ROLE)

        with pytest.raises(IllegalTransitionError):
            manager.approve(request.request_id, "carol", "VIEWER")

    def test_unknown_request(self, manager):
        with pytest.raises(ApprovalNotFoundError):
            manager.approve(uuid4(), APPROVER, ADMIN_ROLE)


# =========================================================================
# resubmit
# =========================================================================


class TestResubmit:
    def test_resubmit_reopens_same_request(self, submit_request, manager, session):
        request = submit_request("dash-1")
        manager.reject(request.request_id, APPROVER, ADMIN_ROLE, "too many panels")

        reopened = manager.resubmit(
            request.request_id,
            REQUESTER,
            new_proposed_state={"title": "Dashboard dash-1", "panels": ["cpu"]},
            change_summary="dropped memory panel",
        )

        assert reopened.request_id == request.request_id
        assert reopened.status is ApprovalStatus.PENDING_APPROVAL
        assert reopened.proposed_state == {"title": "Dashboard dash-1", "panels": ["cpu"]}
        assert reopened.decided_by is None
        assert reopened.decided_at is None
        assert reopened.rejection_reason is None
        assert reopened.change_summary == "dropped memory panel"

        actions = actions_for(session, request.request_id)
        assert [a.action_type for a in actions] == ["SUBMIT", "REJECT", "RESUBMIT"]
        assert actions[2].previous_status == "REJECTED"
        assert actions[2].new_status == "PENDING_APPROVAL"
        assert actions[2].state_hash == hash_document(reopened.proposed_state)

    def test_resubmit_keeps_state_when_none_given(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.reject(request.request_id, APPROVER, ADMIN_ROLE, "wait for freeze")

        reopened = manager.resubmit(request.request_id, REQUESTER)

        assert reopened.proposed_state == request.proposed_state

    def test_resubmit_pending_is_illegal(self, submit_request, manager):
        request = submit_request("dash-1")
        with pytest.raises(IllegalTransitionError):
            manager.resubmit(request.request_id, REQUESTER)

    def test_resubmit_approved_is_illegal(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.approve(request.request_id, APPROVER, ADMIN_ROLE)
        with pytest.raises(IllegalTransitionError):
            manager.resubmit(request.request_id, REQUESTER)

    def test_resubmit_conflicts_with_newer_pending(self, submit_request, manager, session):
        old = submit_request("dash-1")
        manager.reject(old.request_id, APPROVER, ADMIN_ROLE, "superseded")
        newer = submit_request("dash-1")

        with pytest.raises(DuplicatePendingRequestError) as exc_info:
            manager.resubmit(old.request_id, REQUESTER)

        assert exc_info.value.existing_request_id == str(newer.request_id)
        assert action_count(session, old.request_id) == 2


# =========================================================================
# race recovery: the paths a concurrent writer forces on PostgreSQL
# =========================================================================


class TestRaceRecovery:
    def test_unique_index_conflict_becomes_duplicate(
        self, submit_request, manager, session, monkeypatch,
    ):
        winner = submit_request("dash-1")
        real_find = manager._find_pending
        calls = []

        def find_after_race(entity_type, entity_id):
            # First read runs before the competing insert is visible.
            calls.append(entity_id)
            if len(calls) == 1:
                return None
            return real_find(entity_type, entity_id)

        monkeypatch.setattr(manager, "_find_pending", find_after_race)

        with pytest.raises(DuplicatePendingRequestError) as exc_info:
            manager.submit("DASHBOARD", "dash-1", "UPDATE", {"title": "late"}, "dave")

        assert len(calls) == 2
        assert exc_info.value.existing_request_id == str(winner.request_id)
        assert pending_count(session, "DASHBOARD", "dash-1") == 1
        stored = session.get(ApprovalRequestModel, winner.request_id)
        assert stored.requested_by == REQUESTER
        assert stored.proposed_state == winner.proposed_state
        assert action_count(session, winner.request_id) == 1

    def test_version_conflict_becomes_illegal_transition(
        self, submit_request, manager, session, deterministic_clock, monkeypatch,
    ):
        request = submit_request("dash-1")
        real_load = manager._load_for_update
        loads = []

        def load_then_lose_race(request_id):
            model = real_load(request_id)
            loads.append(model.version)
            if len(loads) == 1:
                # Another writer rejects the row after we read it.
                session.execute(
                    update(ApprovalRequestModel)
                    .where(ApprovalRequestModel.id == request_id)
                    .values(
                        status=ApprovalStatus.REJECTED.value,
                        rejection_reason="rejected elsewhere",
                        decided_by="carol",
                        decided_at=deterministic_clock.now(),
                        version=ApprovalRequestModel.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
            return model

        monkeypatch.setattr(manager, "_load_for_update", load_then_lose_race)

        with pytest.raises(IllegalTransitionError) as exc_info:
            manager.approve(request.request_id, APPROVER, ADMIN_ROLE)

        assert exc_info.value.current_status == "REJECTED"
        assert exc_info.value.action_type == "APPROVE"
        assert loads == [1, 2]
        stored = session.get(ApprovalRequestModel, request.request_id)
        assert stored.status == "REJECTED"
        assert stored.decided_by == "carol"
        assert action_count(session, request.request_id) == 1


# =========================================================================
# revoke
# =========================================================================


class TestRevoke:
    def test_revoke_ends_rejected(self, submit_request, manager, session):
        request = submit_request("dash-1")

        revoked = manager.revoke(request.request_id, REQUESTER, "opened by mistake")

        assert revoked.status is ApprovalStatus.REJECTED
        assert revoked.rejection_reason == "opened by mistake"
        assert revoked.decided_by == REQUESTER
        last = actions_for(session, request.request_id)[-1]
        assert last.action_type == "REVOKE"
        assert last.new_status == "REJECTED"

    def test_revoke_needs_reason(self, submit_request, manager):
        request = submit_request("dash-1")
        with pytest.raises(MissingJustificationError):
            manager.revoke(request.request_id, REQUESTER, "  ")

    def test_revoke_approved_is_illegal(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.approve(request.request_id, APPROVER, ADMIN_ROLE)
        with pytest.raises(IllegalTransitionError):
            manager.revoke(request.request_id, REQUESTER, "too late")

    def test_revoked_request_can_be_resubmitted(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.revoke(request.request_id, REQUESTER, "needs another panel")
        reopened = manager.resubmit(request.request_id, REQUESTER)
        assert reopened.is_pending


# =========================================================================
# update_request
# =========================================================================


class TestUpdateRequest:
    def test_update_amends_proposed_state(self, submit_request, manager, session):
        request = submit_request("dash-1")
        new_state = {"title": "Dashboard dash-1", "panels": ["cpu", "disk"]}

        updated = manager.update_request(request.request_id, REQUESTER, new_state, "swap panel")

        assert updated.status is ApprovalStatus.PENDING_APPROVAL
        assert updated.proposed_state == new_state
        last = actions_for(session, request.request_id)[-1]
        assert last.action_type == ActionType.UPDATE_REQUEST.value
        assert last.previous_status is None
        assert last.new_status is None
        assert last.state_hash == hash_document(new_state)

    def test_update_rejected_request_is_illegal(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.reject(request.request_id, APPROVER, ADMIN_ROLE, "no")
        with pytest.raises(IllegalTransitionError):
            manager.update_request(request.request_id, REQUESTER, {"title": "x"})

    def test_update_requires_state(self, submit_request, manager):
        request = submit_request("dash-1")
        with pytest.raises(InvalidApprovalPayloadError):
            manager.update_request(request.request_id, REQUESTER, None)


# =========================================================================
# action log
# =========================================================================


class TestActionChain:
    def test_actions_are_chained(self, submit_request, manager, session):
        request = submit_request("dash-1")
        manager.reject(request.request_id, APPROVER, ADMIN_ROLE, "rename it")
        manager.resubmit(request.request_id, REQUESTER)
        manager.approve(request.request_id, APPROVER, ADMIN_ROLE)

        actions = actions_for(session, request.request_id)
        assert [a.sequence for a in actions] == [1, 2, 3, 4]
        assert actions[0].prev_hash is None
        for previous, current in zip(actions, actions[1:]):
            assert current.prev_hash == previous.hash

    def test_failed_actions_leave_no_trace(self, submit_request, manager, session):
        request = submit_request("dash-1")
        for attempt in (
            lambda: manager.approve(request.request_id, "carol", "VIEWER"),
            lambda: manager.reject(request.request_id, APPROVER, ADMIN_ROLE, ""),
            lambda: manager.resubmit(request.request_id, REQUESTER),
        ):
            with pytest.raises(Exception):
                attempt()
        assert action_count(session, request.request_id) == 1


# =========================================================================
# purge
# =========================================================================


class TestPurge:
    def test_purge_removes_request_and_actions(self, submit_request, manager, session):
        request = submit_request("dash-1")
        manager.reject(request.request_id, APPROVER, ADMIN_ROLE, "obsolete")
        last_hash = actions_for(session, request.request_id)[-1].hash

        record = manager.purge(request.request_id, APPROVER, ADMIN_ROLE, "GDPR erasure")

        assert record.request_id == request.request_id
        assert record.final_status is ApprovalStatus.REJECTED
        assert record.action_count == 2
        assert record.last_action_hash == last_hash
        assert session.execute(
            select(ApprovalRequestModel).where(ApprovalRequestModel.id == request.request_id)
        ).scalar_one_or_none() is None
        assert action_count(session, request.request_id) == 0
        assert session.execute(
            select(func.count()).select_from(ApprovalPurgeRecordModel)
        ).scalar_one() == 1

    def test_purge_pending_is_illegal(self, submit_request, manager):
        request = submit_request("dash-1")
        with pytest.raises(IllegalTransitionError) as exc_info:
            manager.purge(request.request_id, APPROVER, ADMIN_ROLE, "cleanup")
        assert exc_info.value.action_type == "PURGE"

    def test_purge_requires_privilege(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.approve(request.request_id, APPROVER, ADMIN_ROLE)
        with pytest.raises(UnauthorizedActionError):
            manager.purge(request.request_id, "carol", "VIEWER", "cleanup")

    def test_purge_requires_reason(self, submit_request, manager):
        request = submit_request("dash-1")
        manager.approve(request.request_id, APPROVER, ADMIN_ROLE)
        with pytest.raises(MissingJustificationError):
            manager.purge(request.request_id, APPROVER, ADMIN_ROLE, "")

    def test_purge_unknown_request(self, manager):
        with pytest.raises(ApprovalNotFoundError):
            manager.purge(uuid4(), APPROVER, ADMIN_ROLE, "cleanup")

"""
Tests for EntityStore.

Each test works inside the fixture session; the store only flushes, so
nothing here is committed.
"""

import pytest

from travel_engines.transition import evaluate_transition
from travel_kernel.domain.request import (
    Actor,
    Requestor,
    RequestStatus,
    RequestType,
    StepStatus,
    StepTemplate,
    WorkflowAction,
)
from travel_kernel.domain.routing import Role
from travel_kernel.exceptions import (
    InvalidTransitionError,
    RequestNotFoundError,
    StaleTransitionError,
)

REQUESTOR = Requestor(
    name="Aisha Rahman",
    staff_id="S0001",
    department="Engineering",
    email="aisha.rahman@example.com",
)


def allow_all(actor_id, capability):
    return True


def submit(store, request):
    plan = evaluate_transition(
        request, WorkflowAction.SUBMIT, Actor("S0001"), allow_all,
    )
    return store.transition(plan)


class TestCreateRequest:

    def test_creates_draft_with_submission_step(self, store, clock):
        request = store.create_request(
            RequestType.TRF, REQUESTOR, context="nyc",
            additional_data={"destination": "New York"},
        )

        assert request.status == RequestStatus.DRAFT
        assert request.request_id.startswith("TSR-20250702-1423-NYC-")
        assert request.additional_data == {"destination": "New York"}
        assert request.submitted_at is None
        assert request.created_at == clock.now()
        assert len(request.steps) == 1
        step = request.steps[0]
        assert step.sequence == 1
        assert step.step_role == Role.REQUESTOR
        assert step.status == StepStatus.PENDING

    def test_default_context_per_type(self, store):
        transport = store.create_request(RequestType.TRANSPORT, REQUESTOR)
        claim = store.create_request(RequestType.CLAIM, REQUESTOR, context="ignored")

        assert transport.request_id.startswith("TRN-20250702-1423-LOCAL-")
        assert claim.request_id.startswith("CLM-20250702-1423-")
        assert "IGNOR" not in claim.request_id

    def test_explicit_request_id(self, store):
        request = store.create_request(
            RequestType.VISA, REQUESTOR, request_id="VIS-20250101-0900-GEN-AAAA",
        )

        assert store.get_status("VIS-20250101-0900-GEN-AAAA", RequestType.VISA) == (
            RequestStatus.DRAFT
        )
        assert request.request_type == RequestType.VISA

    def test_logs_creation(self, store, captured_logs):
        request = store.create_request(RequestType.TRANSPORT, REQUESTOR)

        records = [r for r in captured_logs() if r["message"] == "travel_request_created"]
        assert records[0]["request_id"] == request.request_id
        assert records[0]["requestor_staff_id"] == "S0001"


class TestReads:

    def test_unknown_request_raises(self, store):
        with pytest.raises(RequestNotFoundError):
            store.get_request("TRN-20250702-1423-LOCAL-ZZZZ", RequestType.TRANSPORT)

    def test_lookup_is_scoped_by_type(self, store):
        request = store.create_request(RequestType.TRANSPORT, REQUESTOR)

        with pytest.raises(RequestNotFoundError):
            store.get_request(request.request_id, RequestType.VISA)

    def test_pending_step_and_history(self, store):
        request = submit(store, store.create_request(RequestType.TRANSPORT, REQUESTOR)).request

        pending = store.get_pending_step(request.request_id, RequestType.TRANSPORT)
        steps = store.get_steps(request.request_id, RequestType.TRANSPORT)

        assert pending.sequence == 2
        assert pending.step_role == Role.DEPARTMENT_FOCAL
        assert [s.sequence for s in steps] == [1, 2]

    def test_list_awaiting_role(self, store):
        waiting = submit(store, store.create_request(RequestType.TRANSPORT, REQUESTOR)).request
        store.create_request(RequestType.TRANSPORT, REQUESTOR)
        submit(store, store.create_request(RequestType.VISA, REQUESTOR))

        focal_queue = store.list_awaiting_role(RequestType.TRANSPORT, Role.DEPARTMENT_FOCAL)

        assert [r.request_id for r in focal_queue] == [waiting.request_id]


class TestTransition:

    def test_submit_resolves_draft_and_opens_focal_step(self, store, clock):
        draft = store.create_request(RequestType.TRANSPORT, REQUESTOR)

        result = submit(store, draft)

        assert result.request.status == RequestStatus.PENDING_DEPARTMENT_FOCAL
        assert result.request.submitted_at == clock.now()
        assert result.resolved_step.status == StepStatus.APPROVED
        assert result.resolved_step.approver_id == "S0001"
        assert result.resolved_step.approver_role == Role.REQUESTOR
        assert result.opened_step.sequence == 2
        assert result.request.version > draft.version

    def test_terminal_transition_opens_nothing(self, store):
        request = submit(store, store.create_request(RequestType.TRANSPORT, REQUESTOR)).request
        plan = evaluate_transition(
            request, WorkflowAction.REJECT, Actor("S1001", "Farid"), allow_all,
            comment="No budget",
        )

        result = store.transition(plan)

        assert result.request.status == RequestStatus.REJECTED
        assert result.opened_step is None
        assert result.request.pending_step is None
        assert result.resolved_step.comment == "No budget"
        assert result.resolved_step.approver_name == "Farid"

    def test_second_plan_from_same_snapshot_is_stale(self, store):
        request = submit(store, store.create_request(RequestType.TRANSPORT, REQUESTOR)).request
        first = evaluate_transition(request, WorkflowAction.APPROVE, Actor("S1001"), allow_all)
        second = evaluate_transition(request, WorkflowAction.REJECT, Actor("S1002"), allow_all)
        store.transition(first)

        with pytest.raises(StaleTransitionError) as exc_info:
            store.transition(second)

        assert exc_info.value.expected_status == RequestStatus.PENDING_DEPARTMENT_FOCAL
        assert exc_info.value.actual_status == RequestStatus.PENDING_LINE_MANAGER
        steps = store.get_steps(request.request_id, RequestType.TRANSPORT)
        assert [s.status for s in steps] == [
            StepStatus.APPROVED, StepStatus.APPROVED, StepStatus.PENDING,
        ]

    def test_stale_transition_is_logged(self, store, captured_logs):
        request = submit(store, store.create_request(RequestType.TRANSPORT, REQUESTOR)).request
        plan = evaluate_transition(request, WorkflowAction.APPROVE, Actor("S1001"), allow_all)
        store.transition(plan)

        with pytest.raises(StaleTransitionError):
            store.transition(plan)

        assert any(r["message"] == "transition_stale" for r in captured_logs())

    def test_history_stays_contiguous_through_full_chain(self, store, clock):
        request = submit(store, store.create_request(RequestType.VISA, REQUESTOR)).request
        for _ in range(4):
            clock.advance(300)
            plan = evaluate_transition(
                request, WorkflowAction.APPROVE, Actor("S3001"), allow_all,
            )
            request = store.transition(plan).request

        assert request.status == RequestStatus.APPROVED
        assert [s.sequence for s in request.steps] == [1, 2, 3, 4, 5]
        assert all(s.status == StepStatus.APPROVED for s in request.steps)
        acted = [s.acted_at for s in request.steps]
        assert acted == sorted(acted)


class TestLowLevelWrites:

    def test_append_step_rejects_second_pending(self, store):
        request = store.create_request(RequestType.TRANSPORT, REQUESTOR)

        with pytest.raises(InvalidTransitionError, match="pending step"):
            store.append_step(
                request.request_id, RequestType.TRANSPORT,
                StepTemplate(Role.DEPARTMENT_FOCAL, "Department Focal Approval"),
            )

    def test_set_status_with_expected_status(self, store):
        request = store.create_request(RequestType.TRANSPORT, REQUESTOR)

        updated = store.set_status(
            request.request_id, RequestType.TRANSPORT,
            RequestStatus.CANCELLED, expected_status=RequestStatus.DRAFT,
        )

        assert updated.status == RequestStatus.CANCELLED

    def test_set_status_guard_mismatch(self, store):
        request = store.create_request(RequestType.TRANSPORT, REQUESTOR)

        with pytest.raises(StaleTransitionError):
            store.set_status(
                request.request_id, RequestType.TRANSPORT,
                RequestStatus.CANCELLED,
                expected_status=RequestStatus.PENDING_LINE_MANAGER,
            )


class TestTimeoutCandidates:

    def test_steps_record_when_they_opened(self, store, clock):
        draft = store.create_request(RequestType.TRANSPORT, REQUESTOR)
        assert draft.steps[0].opened_at == clock.now()

        clock.advance(60)
        result = submit(store, draft)

        assert result.opened_step.opened_at == clock.now()
        assert result.opened_step.assigned_to is None

    def test_lists_pending_steps_opened_by_cutoff(self, store, clock):
        early = submit(store, store.create_request(RequestType.TRANSPORT, REQUESTOR)).request
        cutoff = clock.now()
        clock.advance(60)
        submit(store, store.create_request(RequestType.VISA, REQUESTOR))

        candidates = store.list_pending_opened_by(cutoff)

        assert [r.request_id for r in candidates] == [early.request_id]

    def test_resolved_steps_are_not_candidates(self, store, clock):
        request = submit(store, store.create_request(RequestType.TRANSPORT, REQUESTOR)).request
        store.transition(evaluate_transition(
            request, WorkflowAction.CANCEL, Actor("S0001"), allow_all,
        ))

        assert store.list_pending_opened_by(clock.advance(3600)) == ()

"""
Hypothesis fuzzing across the WorkflowService.

Drives random (action, actor, comment, delegatee) sequences at freshly submitted
requests of every type and checks after each call:
- Errors are typed WorkflowErrors, never raw driver or Python errors
- At most one step is Pending, and none once the request is terminal
- Step sequences are contiguous from 1
- The status agrees with the step history (pending step matches the
  routing row; terminal status matches the last outcome)
- A failed call changes nothing
"""

from __future__ import annotations

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from conftest import (
    ADMIN_ID,
    CLERK_ID,
    FOCAL_ID,
    MANAGER_ID,
    OUTSIDER_ID,
    REQUESTOR_ID,
    make_payload,
)
from travel_kernel.domain.request import (
    TERMINAL_STATUSES,
    TERMINAL_STEP_OUTCOME,
    RequestType,
    WorkflowAction,
)
from travel_kernel.domain.routing import routing_for
from travel_kernel.exceptions import WorkflowError

ACTORS = [REQUESTOR_ID, FOCAL_ID, MANAGER_ID, CLERK_ID, ADMIN_ID, OUTSIDER_ID]

moves = st.tuples(
    st.sampled_from(list(WorkflowAction) + ["escalate"]),
    st.sampled_from(ACTORS),
    st.one_of(st.none(), st.just(""), st.text(min_size=1, max_size=20)),
    st.one_of(st.none(), st.sampled_from(ACTORS + ["S7777"])),
)


def assert_consistent(request):
    steps = request.steps
    assert [s.sequence for s in steps] == list(range(1, len(steps) + 1))

    pending = [s for s in steps if s.is_pending]
    assert len(pending) <= 1

    if request.status in TERMINAL_STATUSES:
        assert not pending
        assert request.last_resolved_step.status == TERMINAL_STEP_OUTCOME[request.status]
    else:
        assert len(pending) == 1
        entry = routing_for(request.request_type).entry_for(request.status)
        assert entry is not None
        assert pending[0].step_role == entry.required_role
        assert pending[0].step_name == entry.step_name


@pytest.mark.slow_locks
class TestWorkflowFuzzing:

    @settings(
        max_examples=40,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    @given(
        request_type=st.sampled_from(list(RequestType)),
        sequence=st.lists(moves, min_size=1, max_size=8),
    )
    def test_random_actions_keep_history_consistent(self, service, request_type, sequence):
        request = service.submit_request(request_type, make_payload(), REQUESTOR_ID).request
        assert_consistent(request)

        for action, actor_id, comment, delegate_to in sequence:
            before = service.get_request(request.request_id, request_type)
            try:
                result = service.act_on_request(
                    request.request_id, request_type, action, actor_id,
                    comment=comment, delegate_to=delegate_to,
                )
            except WorkflowError:
                after = service.get_request(request.request_id, request_type)
                assert after == before
                continue

            request = result.request
            assert before.status not in TERMINAL_STATUSES
            assert len(request.steps) >= len(before.steps)
            assert request.steps[: len(before.steps) - 1] == before.steps[:-1]
            assert_consistent(request)

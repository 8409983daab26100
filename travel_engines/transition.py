"""
travel_engines.transition -- Pure workflow transition evaluation.

Responsibility:
    Given a request snapshot, an action and an actor, decide whether the
    action is legal at the request's current status, whether the actor may
    take it, and what the request should look like afterwards.  The result
    is a ``TransitionPlan``; applying it is the entity store's job.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import travel_kernel/domain/ types and exceptions.

Invariants enforced:
    - Terminal requests accept no action.
    - Approve and reject are only legal on approver rows; submit and
      resubmit only on the requestor-owned Draft row; cancel on any
      non-terminal row.  Reject is therefore not offered on a Draft: the
      requestor cancels it instead.
    - Delegate is legal only on rows marked ``can_delegate``.  It closes
      the step as Delegated and reopens the same row assigned to the
      delegatee, who may then act without holding the row's capability.
    - Timeouts are evaluated against an explicit ``now``; the engine never
      reads a clock.
    - Authorization precedes any state change: the permission check runs
      before a plan is returned.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - InvalidTransitionError for a terminal status, a status with no
      routing row, an action the row does not allow, a rejection
      without the comment the request type requires, or a delegation
      without a valid delegatee.
    - UnauthorizedActorError when the actor has neither the row's
      capability nor the admin override and is not the step's delegatee.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from travel_kernel.domain.request import (
    REQUESTOR_ACTIONS,
    TERMINAL_STATUSES,
    Actor,
    RequestStatus,
    StepStatus,
    StepTemplate,
    TimeoutAction,
    TransitionPlan,
    TravelRequest,
    WorkflowAction,
)
from travel_kernel.domain.routing import RequestRouting, Role, RouteEntry, routing_for
from travel_kernel.exceptions import InvalidTransitionError, UnauthorizedActorError

# (actor_id, capability) -> granted
PermissionCheck = Callable[[str, str], bool]

DEFAULT_ADMIN_OVERRIDE = "manage_workflows"

# Recorded as the approver on steps closed by timeout processing
TIMEOUT_ACTOR = Actor(actor_id="system", name="Workflow Timeout")

_APPROVER_ACTIONS = frozenset({
    WorkflowAction.APPROVE,
    WorkflowAction.REJECT,
    WorkflowAction.CANCEL,
})

_REQUESTOR_ROW_ACTIONS = frozenset({
    WorkflowAction.SUBMIT,
    WorkflowAction.RESUBMIT,
    WorkflowAction.CANCEL,
})


def evaluate_transition(
    request: TravelRequest,
    action: WorkflowAction | str,
    actor: Actor,
    permission_check: PermissionCheck,
    admin_override_capability: str | None = DEFAULT_ADMIN_OVERRIDE,
    comment: str | None = None,
    delegate_to: str | None = None,
) -> TransitionPlan:
    """Validate ``action`` on ``request`` and return the plan that applies it.

    Args:
        request: Current snapshot, including its step history.
        action: Requested action.
        actor: Principal taking the action.
        permission_check: Capability lookup, normally the permission
            oracle's ``has_permission``.
        admin_override_capability: Capability that bypasses the row's
            capability and the requestor-identity check.  None disables
            the override.
        comment: Free text recorded on the resolved step.
        delegate_to: Staff id the step is handed to; required for
            ``delegate`` and ignored otherwise.

    Returns:
        TransitionPlan carrying the status and step it was computed against.
    """
    action = _coerce_action(request, action)

    if request.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            request.request_id, request.status, action.value,
            reason="request is in a terminal status",
        )

    routing = routing_for(request.request_type)
    entry = routing.entry_for(request.status)
    if entry is None:
        raise InvalidTransitionError(
            request.request_id, request.status, action.value,
            reason=f"no routing entry for {routing.request_type.value} at this status",
        )

    pending = request.pending_step
    if pending is None:
        raise InvalidTransitionError(
            request.request_id, request.status, action.value,
            reason="request has no pending step",
        )

    if action not in _allowed_actions(entry):
        raise InvalidTransitionError(
            request.request_id, request.status, action.value,
            reason=f"'{action.value}' is not available at this step",
        )

    if (
        action == WorkflowAction.REJECT
        and routing.reject_requires_comment
        and not (comment and comment.strip())
    ):
        raise InvalidTransitionError(
            request.request_id, request.status, action.value,
            reason="a comment is required to reject this request",
        )

    if action == WorkflowAction.DELEGATE:
        delegate_to = _check_delegatee(request, actor, delegate_to)

    acting_role = authorize(
        request, entry, action, actor, permission_check, admin_override_capability,
    )

    if action == WorkflowAction.DELEGATE:
        new_status = request.status
        next_step = StepTemplate(
            step_role=pending.step_role,
            step_name=pending.step_name,
            assigned_to=delegate_to,
        )
    else:
        new_status = _target_status(entry, action)
        next_step = _next_step(routing, new_status)

    return TransitionPlan(
        request_id=request.request_id,
        request_type=request.request_type,
        action=action,
        expected_status=request.status,
        expected_step=pending.sequence,
        new_status=new_status,
        step_outcome=_step_outcome(action),
        actor=actor,
        acting_role=acting_role,
        comment=comment,
        next_step=next_step,
    )


def evaluate_timeout(request: TravelRequest, now: datetime) -> TransitionPlan | None:
    """Return the timeout plan for ``request`` at ``now``, or None if not due.

    A step is due once it has been Pending for its row's ``timeout_days``.
    Escalating rows reopen the same row as an admin-override step; the
    rest approve on the system's behalf.  An escalated step never times
    out again.
    """
    if request.status in TERMINAL_STATUSES:
        return None
    pending = request.pending_step
    if pending is None or pending.opened_at is None:
        return None
    if pending.step_role == Role.ADMIN_OVERRIDE:
        return None

    routing = routing_for(request.request_type)
    entry = routing.entry_for(request.status)
    if entry is None or entry.timeout_days is None:
        return None
    if now < pending.opened_at + timedelta(days=entry.timeout_days):
        return None

    if entry.escalate_on_timeout:
        return TransitionPlan(
            request_id=request.request_id,
            request_type=request.request_type,
            action=TimeoutAction.ESCALATE,
            expected_status=request.status,
            expected_step=pending.sequence,
            new_status=request.status,
            step_outcome=StepStatus.ESCALATED,
            actor=TIMEOUT_ACTOR,
            acting_role=Role.SYSTEM,
            comment="Escalated due to timeout",
            next_step=StepTemplate(
                step_role=Role.ADMIN_OVERRIDE,
                step_name=f"{entry.step_name} (Escalated)",
            ),
        )

    return TransitionPlan(
        request_id=request.request_id,
        request_type=request.request_type,
        action=TimeoutAction.AUTO_APPROVE,
        expected_status=request.status,
        expected_step=pending.sequence,
        new_status=entry.on_approve,
        step_outcome=StepStatus.APPROVED,
        actor=TIMEOUT_ACTOR,
        acting_role=Role.SYSTEM,
        comment="Auto-approved due to timeout",
        next_step=_next_step(routing, entry.on_approve),
    )


def authorize(
    request: TravelRequest,
    entry: RouteEntry,
    action: WorkflowAction,
    actor: Actor,
    permission_check: PermissionCheck,
    admin_override_capability: str | None = DEFAULT_ADMIN_OVERRIDE,
) -> str:
    """Return the role the actor acts in, or raise UnauthorizedActorError.

    Requestor actions are authorised by identity.  Approver actions need
    the row's capability, or the actor must be the pending step's
    delegatee.  Either may fall back to the admin override.
    """
    if action in REQUESTOR_ACTIONS and actor.actor_id == request.requestor.staff_id:
        return Role.REQUESTOR

    if action not in REQUESTOR_ACTIONS and entry.capability:
        if permission_check(actor.actor_id, entry.capability):
            return entry.required_role

    if action not in REQUESTOR_ACTIONS and not entry.requestor_owned:
        pending = request.pending_step
        if pending is not None and pending.assigned_to == actor.actor_id:
            return Role.DELEGATE

    if admin_override_capability and permission_check(
        actor.actor_id, admin_override_capability,
    ):
        return Role.ADMIN_OVERRIDE

    if action in REQUESTOR_ACTIONS:
        required_role, required_capability = Role.REQUESTOR, None
    else:
        required_role, required_capability = entry.required_role, entry.capability
    raise UnauthorizedActorError(
        request.request_id, actor.actor_id, required_role, required_capability,
    )


def available_actions(
    request: TravelRequest,
    actor: Actor,
    permission_check: PermissionCheck,
    admin_override_capability: str | None = DEFAULT_ADMIN_OVERRIDE,
) -> tuple[WorkflowAction, ...]:
    """Actions ``actor`` could take right now (comment rules aside)."""
    if request.status in TERMINAL_STATUSES or request.pending_step is None:
        return ()
    entry = routing_for(request.request_type).entry_for(request.status)
    if entry is None:
        return ()

    allowed = _allowed_actions(entry)
    result = []
    for action in WorkflowAction:
        if action not in allowed:
            continue
        try:
            authorize(
                request, entry, action, actor, permission_check,
                admin_override_capability,
            )
        except UnauthorizedActorError:
            continue
        result.append(action)
    return tuple(result)


def _allowed_actions(entry: RouteEntry) -> frozenset[WorkflowAction]:
    if entry.requestor_owned:
        return _REQUESTOR_ROW_ACTIONS
    if entry.can_delegate:
        return _APPROVER_ACTIONS | {WorkflowAction.DELEGATE}
    return _APPROVER_ACTIONS


def _check_delegatee(
    request: TravelRequest, actor: Actor, delegate_to: str | None,
) -> str:
    delegatee = (delegate_to or "").strip()
    if not delegatee:
        reason = "a delegatee is required"
    elif delegatee == actor.actor_id:
        reason = "cannot delegate to yourself"
    elif delegatee == request.requestor.staff_id:
        reason = "cannot delegate to the requestor"
    elif request.pending_step and delegatee == request.pending_step.assigned_to:
        reason = "step is already assigned to this delegatee"
    else:
        return delegatee
    raise InvalidTransitionError(
        request.request_id, request.status, WorkflowAction.DELEGATE.value,
        reason=reason,
    )


def _coerce_action(request: TravelRequest, action: WorkflowAction | str) -> WorkflowAction:
    try:
        return WorkflowAction(action)
    except ValueError:
        raise InvalidTransitionError(
            request.request_id, request.status, str(action),
            reason="unknown action",
        ) from None


def _target_status(entry: RouteEntry, action: WorkflowAction) -> str:
    if action == WorkflowAction.REJECT:
        return entry.on_reject
    if action == WorkflowAction.CANCEL:
        return RequestStatus.CANCELLED
    return entry.on_approve


def _step_outcome(action: WorkflowAction) -> StepStatus:
    if action == WorkflowAction.REJECT:
        return StepStatus.REJECTED
    if action == WorkflowAction.CANCEL:
        return StepStatus.CANCELLED
    if action == WorkflowAction.DELEGATE:
        return StepStatus.DELEGATED
    return StepStatus.APPROVED


def _next_step(routing: RequestRouting, new_status: str) -> StepTemplate | None:
    if new_status in TERMINAL_STATUSES:
        return None
    entry = routing.entry_for(new_status)
    return entry.as_step() if entry is not None else None

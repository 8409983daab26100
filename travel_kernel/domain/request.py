"""
Request and approval domain types (``travel_kernel.domain.request``).

Responsibility
--------------
Pure value objects for the approval workflow: request types, the open
status vocabulary, step outcomes, actions, actors, and the frozen
snapshots that services hand back to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Request status is an open string vocabulary (``RequestStatus`` holds
  the known values) so new request types can add statuses without a
  schema change.
* ``TERMINAL_STATUSES`` have no outgoing transitions.
* A ``TravelRequest`` snapshot carries its steps ordered by sequence;
  at most one of them is Pending.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class RequestType(str, Enum):
    """Kinds of request that move through approval."""

    TRANSPORT = "transport"
    ACCOMMODATION = "accommodation"
    VISA = "visa"
    TRF = "trf"
    CLAIM = "claim"


class RequestStatus:
    """Known request status values (open vocabulary, not a DB enum)."""

    DRAFT = "Draft"
    PENDING_DEPARTMENT_FOCAL = "Pending Department Focal"
    PENDING_LINE_MANAGER = "Pending Line Manager/HOD"
    PENDING_TRANSPORT_ADMIN = "Pending Transport Admin"
    PENDING_ACCOMMODATION_ADMIN = "Pending Accommodation Admin"
    PENDING_TRAVEL_ADMIN = "Pending Travel Admin"
    PENDING_FINANCE_CLERK = "Pending Finance Clerk"
    PENDING_VISA_CLERK = "Pending Visa Clerk"
    PROCESSING_WITH_EMBASSY = "Processing with Embassy"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


TERMINAL_STATUSES: frozenset[str] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
})


class StepStatus(str, Enum):
    """Approval step outcome.

    Delegated and Escalated close a step without moving the request; the
    same routing row reopens as a new Pending step.
    """

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    DELEGATED = "Delegated"
    ESCALATED = "Escalated"


# Step outcome implied by each terminal request status
TERMINAL_STEP_OUTCOME: dict[str, StepStatus] = {
    RequestStatus.APPROVED: StepStatus.APPROVED,
    RequestStatus.REJECTED: StepStatus.REJECTED,
    RequestStatus.CANCELLED: StepStatus.CANCELLED,
}


class WorkflowAction(str, Enum):
    """Actions a caller may request on a request."""

    SUBMIT = "submit"
    RESUBMIT = "resubmit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    DELEGATE = "delegate"


# Actions only the requestor (or an admin override) may take
REQUESTOR_ACTIONS: frozenset[WorkflowAction] = frozenset({
    WorkflowAction.SUBMIT,
    WorkflowAction.RESUBMIT,
    WorkflowAction.CANCEL,
})


class TimeoutAction(str, Enum):
    """Actions taken by timeout processing, never requested by a caller."""

    AUTO_APPROVE = "auto_approve"
    ESCALATE = "escalate"


class ExecutionStatus(str, Enum):
    """Workflow execution lifecycle."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# =========================================================================
# Identities
# =========================================================================


@dataclass(frozen=True)
class Requestor:
    """Person on whose behalf the request is raised."""

    name: str
    staff_id: str
    department: str
    email: str | None = None


@dataclass(frozen=True)
class Actor:
    """Principal executing an action.  ``actor_id`` is the staff id."""

    actor_id: str
    name: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.actor_id


# =========================================================================
# Snapshots
# =========================================================================


@dataclass(frozen=True)
class ApprovalStepRecord:
    """Immutable snapshot of one approval step."""

    sequence: int
    step_role: str
    step_name: str
    status: StepStatus = StepStatus.PENDING
    acted_at: datetime | None = None
    approver_id: str | None = None
    approver_name: str | None = None
    approver_role: str | None = None
    comment: str | None = None
    step_id: UUID | None = None
    # Delegatee who may act on this step without the row's capability
    assigned_to: str | None = None
    opened_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING


@dataclass(frozen=True)
class TravelRequest:
    """Immutable snapshot of a request and its step history."""

    request_id: str
    request_type: RequestType
    requestor: Requestor
    status: str
    submitted_at: datetime | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)
    version: int = 1
    created_at: datetime | None = None
    steps: tuple[ApprovalStepRecord, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def pending_step(self) -> ApprovalStepRecord | None:
        for step in self.steps:
            if step.is_pending:
                return step
        return None

    @property
    def last_resolved_step(self) -> ApprovalStepRecord | None:
        resolved = [s for s in self.steps if not s.is_pending]
        return resolved[-1] if resolved else None


@dataclass(frozen=True)
class WorkflowExecution:
    """Immutable snapshot of one tracked workflow evaluation."""

    execution_id: UUID
    request_id: str
    request_type: RequestType
    status: ExecutionStatus
    attempt: int
    started_at: datetime
    finished_at: datetime | None = None
    action: str | None = None
    actor_id: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    outcome: str | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING


# =========================================================================
# Transition plan / result
# =========================================================================


@dataclass(frozen=True)
class StepTemplate:
    """Role and display name of a step still to be opened."""

    step_role: str
    step_name: str
    assigned_to: str | None = None


@dataclass(frozen=True)
class TransitionPlan:
    """A validated, not yet applied transition.

    ``expected_status`` and ``expected_step`` record what the plan was
    computed against; the entity store re-checks both under lock before
    writing.
    """

    request_id: str
    request_type: RequestType
    action: WorkflowAction | TimeoutAction
    expected_status: str
    expected_step: int
    new_status: str
    step_outcome: StepStatus
    actor: Actor
    acting_role: str
    comment: str | None = None
    next_step: StepTemplate | None = None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an applied transition."""

    request: TravelRequest
    resolved_step: ApprovalStepRecord
    opened_step: ApprovalStepRecord | None = None
    execution_id: UUID | None = None

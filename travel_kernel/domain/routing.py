"""
Routing table (``travel_kernel.domain.routing``).

Responsibility
--------------
The single source of truth for how each request type moves through
approval: for every (request type, current status) it names the role
that must act, the capability checked with the permission oracle, the
display name of the step, and the next status on approve and on reject.

Adding a request type means adding one ``RequestRouting`` row set to
``ROUTING_TABLE``; no control flow changes.

Architecture position
---------------------
**Kernel domain layer** -- pure data.  ZERO I/O.

Invariants enforced
-------------------
* Every ``on_approve`` target is either another status in the same row
  set or ``Approved``; every ``on_reject`` target is ``Rejected``.
* Terminal statuses never appear as a row.
* Role spellings are normalised (``Line Manager/HOD`` everywhere).
* Only approver rows delegate or time out; the Draft row does neither.
"""

from __future__ import annotations

from dataclasses import dataclass

from travel_kernel.domain.request import (
    TERMINAL_STATUSES,
    RequestStatus,
    RequestType,
    StepTemplate,
)
from travel_kernel.exceptions import UnknownRequestTypeError


class Role:
    """Approver role names recorded on steps."""

    REQUESTOR = "Requestor"
    DEPARTMENT_FOCAL = "Department Focal"
    LINE_MANAGER = "Line Manager/HOD"
    TRANSPORT_ADMIN = "Transport Admin"
    ACCOMMODATION_ADMIN = "Accommodation Admin"
    TRAVEL_ADMIN = "Travel Admin"
    FINANCE_CLERK = "Finance Clerk"
    VISA_CLERK = "Visa Clerk"
    ADMIN_OVERRIDE = "Admin Override"
    # Acting roles that are not routing rows
    DELEGATE = "Delegate"
    SYSTEM = "System"


@dataclass(frozen=True)
class RouteEntry:
    """One routing row: who acts at ``status`` and where each outcome leads.

    ``capability`` is None for requestor-owned rows (Draft), which are
    authorised by identity rather than by the permission oracle.

    ``timeout_days`` is how long the step may stay Pending before timeout
    processing acts on it: escalation to workflow administrators when
    ``escalate_on_timeout`` is set, otherwise an automatic approval.
    """

    status: str
    required_role: str
    step_name: str
    on_approve: str
    capability: str | None = None
    on_reject: str = RequestStatus.REJECTED
    can_delegate: bool = False
    timeout_days: int | None = None
    escalate_on_timeout: bool = False

    @property
    def requestor_owned(self) -> bool:
        return self.capability is None

    def as_step(self) -> StepTemplate:
        return StepTemplate(step_role=self.required_role, step_name=self.step_name)


@dataclass(frozen=True)
class RequestRouting:
    """Row set for one request type."""

    request_type: RequestType
    id_prefix: str
    default_id_context: str
    entries: tuple[RouteEntry, ...]
    reject_requires_comment: bool = False

    def entry_for(self, status: str) -> RouteEntry | None:
        for entry in self.entries:
            if entry.status == status:
                return entry
        return None

    @property
    def statuses(self) -> tuple[str, ...]:
        return tuple(e.status for e in self.entries) + tuple(sorted(TERMINAL_STATUSES))

    @property
    def capabilities(self) -> frozenset[str]:
        return frozenset(e.capability for e in self.entries if e.capability)


def _draft(step_name: str = "Submission") -> RouteEntry:
    return RouteEntry(
        status=RequestStatus.DRAFT,
        required_role=Role.REQUESTOR,
        step_name=step_name,
        on_approve=RequestStatus.PENDING_DEPARTMENT_FOCAL,
    )


ROUTING_TABLE: dict[RequestType, RequestRouting] = {
    RequestType.TRANSPORT: RequestRouting(
        request_type=RequestType.TRANSPORT,
        id_prefix="TRN",
        default_id_context="LOCAL",
        entries=(
            _draft(),
            RouteEntry(
                status=RequestStatus.PENDING_DEPARTMENT_FOCAL,
                required_role=Role.DEPARTMENT_FOCAL,
                step_name="Department Focal Approval",
                capability="approve_transport_focal",
                on_approve=RequestStatus.PENDING_LINE_MANAGER,
                can_delegate=True,
                timeout_days=3,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_LINE_MANAGER,
                required_role=Role.LINE_MANAGER,
                step_name="Line Manager/HOD Approval",
                capability="approve_transport_manager",
                on_approve=RequestStatus.PENDING_TRANSPORT_ADMIN,
                can_delegate=True,
                timeout_days=5,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_TRANSPORT_ADMIN,
                required_role=Role.TRANSPORT_ADMIN,
                step_name="Transport Admin Processing",
                capability="process_transport_requests",
                on_approve=RequestStatus.APPROVED,
                timeout_days=7,
                escalate_on_timeout=True,
            ),
        ),
    ),
    RequestType.ACCOMMODATION: RequestRouting(
        request_type=RequestType.ACCOMMODATION,
        id_prefix="ACCOM",
        default_id_context="GEN",
        entries=(
            _draft(),
            RouteEntry(
                status=RequestStatus.PENDING_DEPARTMENT_FOCAL,
                required_role=Role.DEPARTMENT_FOCAL,
                step_name="Department Focal Approval",
                capability="approve_accommodation_focal",
                on_approve=RequestStatus.PENDING_LINE_MANAGER,
                can_delegate=True,
                timeout_days=3,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_LINE_MANAGER,
                required_role=Role.LINE_MANAGER,
                step_name="Line Manager/HOD Approval",
                capability="approve_accommodation_manager",
                on_approve=RequestStatus.PENDING_ACCOMMODATION_ADMIN,
                can_delegate=True,
                timeout_days=5,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_ACCOMMODATION_ADMIN,
                required_role=Role.ACCOMMODATION_ADMIN,
                step_name="Accommodation Admin Processing",
                capability="manage_accommodation_bookings",
                on_approve=RequestStatus.APPROVED,
                timeout_days=7,
                escalate_on_timeout=True,
            ),
        ),
    ),
    RequestType.TRF: RequestRouting(
        request_type=RequestType.TRF,
        id_prefix="TSR",
        default_id_context="GEN",
        entries=(
            _draft(),
            RouteEntry(
                status=RequestStatus.PENDING_DEPARTMENT_FOCAL,
                required_role=Role.DEPARTMENT_FOCAL,
                step_name="Department Focal Approval",
                capability="approve_trf_focal",
                on_approve=RequestStatus.PENDING_LINE_MANAGER,
                can_delegate=True,
                timeout_days=3,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_LINE_MANAGER,
                required_role=Role.LINE_MANAGER,
                step_name="Line Manager/HOD Approval",
                capability="approve_trf_manager",
                on_approve=RequestStatus.PENDING_TRAVEL_ADMIN,
                can_delegate=True,
                timeout_days=5,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_TRAVEL_ADMIN,
                required_role=Role.TRAVEL_ADMIN,
                step_name="Travel Admin Processing",
                capability="manage_flights",
                on_approve=RequestStatus.APPROVED,
                timeout_days=7,
                escalate_on_timeout=True,
            ),
        ),
    ),
    RequestType.CLAIM: RequestRouting(
        request_type=RequestType.CLAIM,
        id_prefix="CLM",
        default_id_context="",
        entries=(
            _draft(),
            RouteEntry(
                status=RequestStatus.PENDING_DEPARTMENT_FOCAL,
                required_role=Role.DEPARTMENT_FOCAL,
                step_name="Department Focal Approval",
                capability="approve_claims_focal",
                on_approve=RequestStatus.PENDING_LINE_MANAGER,
                can_delegate=True,
                timeout_days=3,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_LINE_MANAGER,
                required_role=Role.LINE_MANAGER,
                step_name="Line Manager/HOD Approval",
                capability="approve_claims_hod",
                on_approve=RequestStatus.PENDING_FINANCE_CLERK,
                can_delegate=True,
                timeout_days=5,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_FINANCE_CLERK,
                required_role=Role.FINANCE_CLERK,
                step_name="Finance Processing",
                capability="process_claims",
                on_approve=RequestStatus.APPROVED,
                timeout_days=7,
                escalate_on_timeout=True,
            ),
        ),
    ),
    RequestType.VISA: RequestRouting(
        request_type=RequestType.VISA,
        id_prefix="VIS",
        default_id_context="GEN",
        reject_requires_comment=True,
        entries=(
            _draft(),
            RouteEntry(
                status=RequestStatus.PENDING_DEPARTMENT_FOCAL,
                required_role=Role.DEPARTMENT_FOCAL,
                step_name="Department Focal Approval",
                capability="approve_visa_focal",
                on_approve=RequestStatus.PENDING_LINE_MANAGER,
                can_delegate=True,
                timeout_days=3,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_LINE_MANAGER,
                required_role=Role.LINE_MANAGER,
                step_name="Line Manager/HOD Approval",
                capability="approve_visa_manager",
                on_approve=RequestStatus.PENDING_VISA_CLERK,
                can_delegate=True,
                timeout_days=5,
            ),
            RouteEntry(
                status=RequestStatus.PENDING_VISA_CLERK,
                required_role=Role.VISA_CLERK,
                step_name="Visa Clerk Processing",
                capability="process_visa_applications",
                on_approve=RequestStatus.PROCESSING_WITH_EMBASSY,
                timeout_days=7,
                escalate_on_timeout=True,
            ),
            RouteEntry(
                status=RequestStatus.PROCESSING_WITH_EMBASSY,
                required_role=Role.VISA_CLERK,
                step_name="Embassy Processing",
                capability="process_visa_applications",
                on_approve=RequestStatus.APPROVED,
            ),
        ),
    ),
}

# Oldest a Pending step can get before any row times out
SHORTEST_TIMEOUT_DAYS: int = min(
    entry.timeout_days
    for routing in ROUTING_TABLE.values()
    for entry in routing.entries
    if entry.timeout_days is not None
)


def routing_for(request_type: RequestType | str) -> RequestRouting:
    """
    Return the row set for ``request_type``.

    Raises:
        UnknownRequestTypeError: If the type has no routing rows.
    """
    try:
        return ROUTING_TABLE[RequestType(request_type)]
    except (ValueError, KeyError):
        raise UnknownRequestTypeError(str(getattr(request_type, "value", request_type))) from None

"""
Module: travel_kernel.models.request
Responsibility: ORM persistence for travel requests and their approval steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Optimistic versioning: ``version`` is the mapper's version_id_col, so
      an UPDATE computed against an older version matches zero rows and
      raises StaleDataError.
    - Single pending step: a partial unique index allows at most one
      ``Pending`` step per request.
    - Contiguous history: UNIQUE(travel_request_id, sequence); the entity
      store allocates ``max(sequence) + 1``.
    - Append-only steps: once a step leaves ``Pending`` no column may change
      and steps can never be deleted.  While Pending only the outcome
      columns (status, acted_at, approver_*, comment) may be written;
      ``assigned_to`` and ``opened_at`` are fixed when the step is opened.

Failure modes:
    - IntegrityError on a second Pending step or a duplicate sequence.
    - ImmutabilityViolationError on UPDATE of a resolved step, UPDATE of a
      structural column, or any DELETE.
    - StaleDataError on a request UPDATE against a superseded version.

Audit relevance:
    The step rows are the approval audit trail: who acted, in which role,
    when, with what outcome and comment, including delegations and
    timeout escalations.  Together with ``workflow_executions`` (every
    attempted action, failed ones included) they are the whole audit
    record; there is no separate audit log table.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from travel_kernel.db.base import Base, TrackedBase, UUIDString
from travel_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from travel_kernel.domain.request import ApprovalStepRecord, TravelRequest


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TravelRequestModel(TrackedBase):
    """Persistent travel request header.

    Contract:
        ``status`` is an open string vocabulary; the routing table decides
        which values are reachable.  Every status write bumps ``version``.
    """

    __tablename__ = "travel_requests"

    __table_args__ = (
        Index("ix_travel_requests_type_status", "request_type", "status"),
        Index("ix_travel_requests_requestor", "requestor_staff_id"),
    )

    request_id: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    request_type: Mapped[str] = mapped_column(String(30), nullable=False)
    requestor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    requestor_staff_id: Mapped[str] = mapped_column(String(100), nullable=False)
    requestor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    department: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(60), nullable=False)
    submitted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    additional_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        back_populates="request",
        order_by="ApprovalStepModel.sequence",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<TravelRequest {self.request_id} {self.request_type} "
            f"status={self.status} v{self.version}>"
        )

    def to_dto(self) -> TravelRequest:
        """Convert ORM model to frozen domain DTO (steps included)."""
        from travel_kernel.domain.request import (
            Requestor,
            RequestType,
            TravelRequest as TravelRequestDTO,
        )

        return TravelRequestDTO(
            request_id=self.request_id,
            request_type=RequestType(self.request_type),
            requestor=Requestor(
                name=self.requestor_name,
                staff_id=self.requestor_staff_id,
                department=self.department,
                email=self.requestor_email,
            ),
            status=self.status,
            submitted_at=as_utc(self.submitted_at),
            additional_data=dict(self.additional_data or {}),
            version=self.version,
            created_at=as_utc(self.created_at),
            steps=tuple(s.to_dto() for s in self.steps),
        )


class ApprovalStepModel(Base):
    """One approval step of a request.  Append-only once resolved."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint(
            "travel_request_id", "sequence",
            name="uq_approval_steps_sequence",
        ),
        # At most one open step per request
        Index(
            "uq_approval_steps_single_pending",
            "travel_request_id",
            unique=True,
            postgresql_where=text("status = 'Pending'"),
            sqlite_where=text("status = 'Pending'"),
        ),
        # Approval queue lookups
        Index("ix_approval_steps_role_status", "step_role", "status"),
        # Timeout sweeps
        Index("ix_approval_steps_status_opened", "status", "opened_at"),
    )

    travel_request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("travel_requests.id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    step_role: Mapped[str] = mapped_column(String(100), nullable=False)
    step_name: Mapped[str] = mapped_column(String(200), nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    opened_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="Pending", active_history=True,
    )
    acted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    approver_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approver_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    approver_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped["TravelRequestModel"] = relationship(
        "TravelRequestModel",
        back_populates="steps",
        foreign_keys=[travel_request_id],
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep #{self.sequence} {self.step_role} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ApprovalStepRecord:
        """Convert ORM model to frozen domain DTO."""
        from travel_kernel.domain.request import (
            ApprovalStepRecord as StepDTO,
            StepStatus,
        )

        return StepDTO(
            sequence=self.sequence,
            step_role=self.step_role,
            step_name=self.step_name,
            status=StepStatus(self.status),
            acted_at=as_utc(self.acted_at),
            approver_id=self.approver_id,
            approver_name=self.approver_name,
            approver_role=self.approver_role,
            comment=self.comment,
            step_id=self.id,
            assigned_to=self.assigned_to,
            opened_at=as_utc(self.opened_at),
        )


# =============================================================================
# ORM-Level Immutability for Steps (Append-Only)
# =============================================================================

# Columns written when a Pending step is resolved
_STEP_OUTCOME_FIELDS = frozenset({
    "status", "acted_at", "approver_id", "approver_name", "approver_role", "comment",
})


@event.listens_for(ApprovalStepModel, "before_update")
def prevent_resolved_step_update(mapper, connection, target):
    """Allow only the Pending -> outcome write; reject everything else."""
    state = inspect(target)
    status_history = state.attrs.status.history
    previous_status = (
        status_history.deleted[0] if status_history.deleted
        else target.status
    )
    if previous_status != "Pending":
        raise ImmutabilityViolationError(
            entity_type="ApprovalStep",
            entity_id=str(target.id),
            reason=f"Step is already {previous_status} -- cannot modify",
        )

    for attr in mapper.column_attrs:
        if attr.key in _STEP_OUTCOME_FIELDS:
            continue
        if state.attrs[attr.key].history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="ApprovalStep",
                entity_id=str(target.id),
                reason=f"Column '{attr.key}' is immutable",
            )


@event.listens_for(ApprovalStepModel, "before_delete")
def prevent_step_delete(mapper, connection, target):
    """Prevent deletion of approval steps."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalStep",
        entity_id=str(target.id),
        reason="Approval steps are append-only -- cannot delete",
    )

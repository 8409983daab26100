"""
ORM model for workflow execution tracking.

Contract:
    WorkflowExecutionModel records one evaluation of a workflow action
    against a request: who triggered it, with what context, and how it
    ended.  ``to_dto()`` returns the frozen ``WorkflowExecution``.

Architecture: travel_kernel/models.  Imports from travel_kernel.db.base only.

Invariants enforced:
    - At most one ``running`` execution per (request_id, request_type),
      enforced by a partial unique index so two racing starts cannot both
      insert.
    - ``attempt`` is unique per (request_id, request_type) and increases
      by one per start.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column

from travel_kernel.db.base import Base
from travel_kernel.models.request import as_utc

if TYPE_CHECKING:
    from travel_kernel.domain.request import WorkflowExecution


class WorkflowExecutionModel(Base):
    """Persistent workflow execution record."""

    __tablename__ = "workflow_executions"

    __table_args__ = (
        UniqueConstraint(
            "request_id", "request_type", "attempt",
            name="uq_workflow_executions_attempt",
        ),
        Index(
            "uq_workflow_executions_single_running",
            "request_id", "request_type",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
        Index("ix_workflow_executions_status_started", "status", "started_at"),
    )

    request_id: Mapped[str] = mapped_column(String(40), nullable=False)
    request_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    context: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(60), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(60), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowExecution {self.id} {self.request_type}/{self.request_id} "
            f"#{self.attempt} status={self.status}>"
        )

    def to_dto(self) -> WorkflowExecution:
        from travel_kernel.domain.request import (
            ExecutionStatus,
            RequestType,
            WorkflowExecution,
        )

        return WorkflowExecution(
            execution_id=self.id,
            request_id=self.request_id,
            request_type=RequestType(self.request_type),
            status=ExecutionStatus(self.status),
            attempt=self.attempt,
            started_at=as_utc(self.started_at),
            finished_at=as_utc(self.finished_at),
            action=self.action,
            actor_id=self.actor_id,
            context=dict(self.context or {}),
            outcome=self.outcome,
            error_code=self.error_code,
            error_message=self.error_message,
        )

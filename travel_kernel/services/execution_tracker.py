"""
ExecutionTracker -- records each evaluation of a workflow action.

Contract:
    ``start_execution()`` opens a ``running`` execution for a request,
    ``complete_execution()`` / ``fail_execution()`` close it, and
    ``get_execution_status()`` returns the latest one.

Architecture: travel_kernel/services.  Imports from domain, models, db.

Invariants enforced:
    - At most one ``running`` execution per (request_id, request_type).
      Checked before insert, and backed by a partial unique index so a
      racing start loses at flush time.
    - All timestamps come from the injected Clock.
    - A finished execution is never reopened or rewritten.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from travel_kernel.domain.request import ExecutionStatus, RequestType, WorkflowExecution
from travel_kernel.exceptions import (
    AlreadyRunningError,
    ExecutionNotFoundError,
    ExecutionNotRunningError,
    PersistenceFailureError,
)
from travel_kernel.logging_config import get_logger
from travel_kernel.models.execution import WorkflowExecutionModel
from travel_kernel.services.base import BaseService

logger = get_logger("services.execution_tracker")


class ExecutionTracker(BaseService[WorkflowExecutionModel]):
    """Workflow execution lifecycle: running -> completed | failed.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT reap abandoned executions; ``list_stale_executions()``
          reports them for an operator.
    """

    def start_execution(
        self,
        request_id: str,
        request_type: RequestType,
        context: dict[str, Any] | None = None,
        action: str | None = None,
        actor_id: str | None = None,
    ) -> UUID:
        """Open a ``running`` execution and return its id.

        Raises:
            AlreadyRunningError: If a running execution exists for the request.
        """
        request_type = RequestType(request_type)
        running = self._running_for(request_id, request_type)
        if running is not None:
            raise AlreadyRunningError(request_id, request_type.value, str(running.id))

        attempts = self.session.execute(
            select(func.count(WorkflowExecutionModel.id)).where(
                WorkflowExecutionModel.request_id == request_id,
                WorkflowExecutionModel.request_type == request_type.value,
            )
        ).scalar_one()

        model = WorkflowExecutionModel(
            request_id=request_id,
            request_type=request_type.value,
            status=ExecutionStatus.RUNNING.value,
            attempt=attempts + 1,
            action=action,
            actor_id=actor_id,
            context=dict(context or {}),
            started_at=self.clock.now(),
        )
        self.session.add(model)
        try:
            self.session.flush()
        except IntegrityError as exc:
            # A concurrent start inserted first
            raise AlreadyRunningError(request_id, request_type.value) from exc
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(request_id, "start_execution", str(exc)) from exc

        logger.info(
            "execution_started",
            extra={
                "execution_id": str(model.id),
                "request_id": request_id,
                "request_type": request_type.value,
                "attempt": model.attempt,
                "action": action,
            },
        )
        return model.id

    def complete_execution(
        self, execution_id: UUID, outcome: str | None = None,
    ) -> WorkflowExecution:
        """Mark a running execution ``completed`` with ``outcome``."""
        model = self._load_running(execution_id)
        model.status = ExecutionStatus.COMPLETED.value
        model.outcome = outcome
        model.finished_at = self.clock.now()
        self._flush(model, "complete_execution")

        logger.info(
            "execution_completed",
            extra={
                "execution_id": str(execution_id),
                "request_id": model.request_id,
                "outcome": outcome,
            },
        )
        return model.to_dto()

    def fail_execution(
        self,
        execution_id: UUID,
        error_code: str,
        error_message: str = "",
    ) -> WorkflowExecution:
        """Mark a running execution ``failed`` with the error that ended it."""
        model = self._load_running(execution_id)
        model.status = ExecutionStatus.FAILED.value
        model.error_code = error_code
        model.error_message = error_message
        model.finished_at = self.clock.now()
        self._flush(model, "fail_execution")

        logger.warning(
            "execution_failed",
            extra={
                "execution_id": str(execution_id),
                "request_id": model.request_id,
                "error_code": error_code,
            },
        )
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_execution_status(
        self, request_id: str, request_type: RequestType,
    ) -> WorkflowExecution | None:
        """Latest execution for the request, or None if it was never evaluated."""
        model = self.session.execute(
            select(WorkflowExecutionModel)
            .where(
                WorkflowExecutionModel.request_id == request_id,
                WorkflowExecutionModel.request_type == RequestType(request_type).value,
            )
            .order_by(WorkflowExecutionModel.attempt.desc())
            .limit(1)
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get_execution(self, execution_id: UUID) -> WorkflowExecution:
        """
        Raises:
            ExecutionNotFoundError: If execution_id does not exist.
        """
        model = self.session.get(WorkflowExecutionModel, execution_id)
        if model is None:
            raise ExecutionNotFoundError(str(execution_id))
        return model.to_dto()

    def list_executions(
        self, request_id: str, request_type: RequestType,
    ) -> tuple[WorkflowExecution, ...]:
        models = self.session.execute(
            select(WorkflowExecutionModel)
            .where(
                WorkflowExecutionModel.request_id == request_id,
                WorkflowExecutionModel.request_type == RequestType(request_type).value,
            )
            .order_by(WorkflowExecutionModel.attempt)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def list_stale_executions(self, older_than: datetime) -> tuple[WorkflowExecution, ...]:
        """Running executions started before ``older_than`` (likely abandoned)."""
        models = self.session.execute(
            select(WorkflowExecutionModel)
            .where(
                WorkflowExecutionModel.status == ExecutionStatus.RUNNING.value,
                WorkflowExecutionModel.started_at < older_than,
            )
            .order_by(WorkflowExecutionModel.started_at)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _running_for(
        self, request_id: str, request_type: RequestType,
    ) -> WorkflowExecutionModel | None:
        return self.session.execute(
            select(WorkflowExecutionModel).where(
                WorkflowExecutionModel.request_id == request_id,
                WorkflowExecutionModel.request_type == request_type.value,
                WorkflowExecutionModel.status == ExecutionStatus.RUNNING.value,
            )
        ).scalar_one_or_none()

    def _load_running(self, execution_id: UUID) -> WorkflowExecutionModel:
        model = self.session.execute(
            select(WorkflowExecutionModel)
            .where(WorkflowExecutionModel.id == execution_id)
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise ExecutionNotFoundError(str(execution_id))
        if model.status != ExecutionStatus.RUNNING.value:
            raise ExecutionNotRunningError(str(execution_id), model.status)
        return model

    def _flush(self, model: WorkflowExecutionModel, operation: str) -> None:
        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(model.request_id, operation, str(exc)) from exc

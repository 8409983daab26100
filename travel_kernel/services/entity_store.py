"""
travel_kernel.services.entity_store -- Request and approval-step persistence.

Responsibility:
    Owns the request header rows and their append-only approval steps.
    Creates requests, answers status and history reads, appends steps, and
    applies a validated ``TransitionPlan`` as a single unit: resolve the
    pending step, open the next one, update the status.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Atomic transition: all writes of ``transition()`` land in the
      caller's transaction; nothing is committed here.
    - Optimistic concurrency: the request row is locked FOR UPDATE and
      re-read, and the plan's expected status and pending step are
      compared before any write.  The version column catches anything
      the lock does not (SQLite).
    - Contiguous history: new steps take ``max(sequence) + 1``.
    - Single pending step: enforced here and by a partial unique index.

Failure modes:
    - RequestNotFoundError if (request_id, request_type) is unknown.
    - StaleTransitionError if the request moved since the plan was made.
    - InvalidTransitionError when appending beside an open step.
    - PersistenceFailureError on any other flush failure.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from travel_kernel.domain.clock import Clock
from travel_kernel.domain.request import (
    ApprovalStepRecord,
    Requestor,
    RequestStatus,
    RequestType,
    StepStatus,
    StepTemplate,
    TransitionPlan,
    TransitionResult,
    TravelRequest,
)
from travel_kernel.domain.routing import Role, routing_for
from travel_kernel.exceptions import (
    InvalidTransitionError,
    PersistenceFailureError,
    RequestNotFoundError,
    StaleTransitionError,
)
from travel_kernel.logging_config import get_logger
from travel_kernel.models.request import ApprovalStepModel, TravelRequestModel
from travel_kernel.services.base import BaseService
from travel_kernel.utils.request_ids import generate_request_id

logger = get_logger("services.entity_store")

# Attempts at drawing an unused request identifier
_MAX_ID_ATTEMPTS = 5


class EntityStore(BaseService[TravelRequestModel]):
    """
    Persistence for travel requests and their approval steps.

    Contract:
        Every read returns frozen domain snapshots; ORM instances never
        leave this class.  Every write flushes and leaves commit to the
        caller.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        id_timezone: tzinfo | None = None,
    ):
        super().__init__(session, clock)
        # Zone the request identifier timestamp is rendered in
        self.id_timezone = id_timezone

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_request(
        self,
        request_type: RequestType,
        requestor: Requestor,
        context: str | None = None,
        additional_data: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> TravelRequest:
        """Create a Draft request with its sequence-1 submission step.

        The identifier is generated from the type prefix, the clock and
        ``context`` unless ``request_id`` is supplied.
        """
        routing = routing_for(request_type)
        request_type = routing.request_type
        now = self.clock.now()

        if request_id is None:
            request_id = self._unused_request_id(
                routing.id_prefix,
                context or routing.default_id_context,
            )

        model = TravelRequestModel(
            request_id=request_id,
            request_type=request_type.value,
            requestor_name=requestor.name,
            requestor_staff_id=requestor.staff_id,
            requestor_email=requestor.email,
            department=requestor.department,
            status=RequestStatus.DRAFT,
            additional_data=dict(additional_data or {}),
        )
        model.created_at = now
        model.updated_at = now
        draft_entry = routing.entry_for(RequestStatus.DRAFT)
        model.steps.append(
            ApprovalStepModel(
                sequence=1,
                step_role=draft_entry.required_role if draft_entry else Role.REQUESTOR,
                step_name=draft_entry.step_name if draft_entry else "Submission",
                status=StepStatus.PENDING.value,
                opened_at=now,
            )
        )
        self.session.add(model)
        self._flush(request_id, "create_request")

        logger.info(
            "travel_request_created",
            extra={
                "request_id": request_id,
                "request_type": request_type.value,
                "requestor_staff_id": requestor.staff_id,
            },
        )
        return model.to_dto()

    def _unused_request_id(self, prefix: str, context: str) -> str:
        for _ in range(_MAX_ID_ATTEMPTS):
            now = self.clock.now()
            if self.id_timezone is not None:
                now = now.astimezone(self.id_timezone)
            candidate = generate_request_id(prefix, context, now)
            taken = self.session.execute(
                select(TravelRequestModel.id).where(
                    TravelRequestModel.request_id == candidate,
                )
            ).first()
            if taken is None:
                return candidate
            logger.debug("request_id_collision", extra={"request_id": candidate})
        raise PersistenceFailureError(
            request_id=f"{prefix}-?",
            operation="create_request",
            detail=f"no unused identifier after {_MAX_ID_ATTEMPTS} attempts",
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_request(
        self, request_id: str, request_type: RequestType | str,
    ) -> TravelRequest:
        """Return the request with its full step history.

        Raises:
            RequestNotFoundError: If no such request exists.
        """
        return self._load(request_id, request_type).to_dto()

    def get_status(self, request_id: str, request_type: RequestType | str) -> str:
        return self._load(request_id, request_type).status

    def get_steps(
        self, request_id: str, request_type: RequestType | str,
    ) -> tuple[ApprovalStepRecord, ...]:
        """Step history ordered by sequence."""
        model = self._load(request_id, request_type)
        return tuple(s.to_dto() for s in model.steps)

    def get_pending_step(
        self, request_id: str, request_type: RequestType | str,
    ) -> ApprovalStepRecord | None:
        for step in self.get_steps(request_id, request_type):
            if step.is_pending:
                return step
        return None

    def list_awaiting_role(
        self,
        request_type: RequestType | str,
        role: str,
    ) -> tuple[TravelRequest, ...]:
        """Requests of ``request_type`` whose open step waits on ``role``."""
        request_type = routing_for(request_type).request_type
        models = self.session.execute(
            select(TravelRequestModel)
            .join(
                ApprovalStepModel,
                ApprovalStepModel.travel_request_id == TravelRequestModel.id,
            )
            .where(
                TravelRequestModel.request_type == request_type.value,
                ApprovalStepModel.status == StepStatus.PENDING.value,
                ApprovalStepModel.step_role == role,
            )
            .order_by(TravelRequestModel.created_at, TravelRequestModel.request_id)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    def list_pending_opened_by(self, cutoff: datetime) -> tuple[TravelRequest, ...]:
        """Requests of any type whose open step was opened at or before ``cutoff``.

        Candidates for timeout processing; whether a step has actually timed
        out depends on its routing row.
        """
        models = self.session.execute(
            select(TravelRequestModel)
            .join(
                ApprovalStepModel,
                ApprovalStepModel.travel_request_id == TravelRequestModel.id,
            )
            .where(
                ApprovalStepModel.status == StepStatus.PENDING.value,
                ApprovalStepModel.opened_at <= cutoff,
            )
            .order_by(ApprovalStepModel.opened_at, TravelRequestModel.request_id)
        ).scalars().all()
        return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def append_step(
        self,
        request_id: str,
        request_type: RequestType | str,
        template: StepTemplate,
    ) -> ApprovalStepRecord:
        """Open a new Pending step after the last one.

        Raises:
            InvalidTransitionError: If the request already has a Pending step.
        """
        model = self._load(request_id, request_type, lock=True)
        return self._append(model, template).to_dto()

    def set_status(
        self,
        request_id: str,
        request_type: RequestType | str,
        new_status: str,
        expected_status: str | None = None,
    ) -> TravelRequest:
        """Overwrite the request status, optionally guarded by ``expected_status``.

        Raises:
            StaleTransitionError: If ``expected_status`` no longer holds.
        """
        model = self._load(request_id, request_type, lock=True)
        if expected_status is not None and model.status != expected_status:
            raise StaleTransitionError(request_id, expected_status, model.status)
        self._apply_status(model, new_status)
        self._flush(request_id, "set_status", expected_status=expected_status)
        return model.to_dto()

    def transition(self, plan: TransitionPlan) -> TransitionResult:
        """Apply ``plan`` inside the caller's transaction.

        Steps, in order:
            1. Lock and re-read the request row.
            2. Check status and pending step against the plan.
            3. Resolve the pending step with the plan's outcome.
            4. Open the next step, if the plan names one.
            5. Set the new status (and ``submitted_at`` on leaving Draft).

        Raises:
            StaleTransitionError: If the request moved since the plan was made.
        """
        model = self._load(plan.request_id, plan.request_type, lock=True)
        pending = self._pending_model(model)

        if (
            model.status != plan.expected_status
            or pending is None
            or pending.sequence != plan.expected_step
        ):
            logger.warning(
                "transition_stale",
                extra={
                    "request_id": plan.request_id,
                    "expected_status": plan.expected_status,
                    "actual_status": model.status,
                    "expected_step": plan.expected_step,
                },
            )
            raise StaleTransitionError(
                plan.request_id,
                plan.expected_status,
                model.status,
                plan.expected_step,
            )

        pending.status = plan.step_outcome.value
        pending.acted_at = self.clock.now()
        pending.approver_id = plan.actor.actor_id
        pending.approver_name = plan.actor.display_name
        pending.approver_role = plan.acting_role
        pending.comment = plan.comment
        # Close the open step before the next one is inserted
        self._flush(plan.request_id, "resolve_step", plan=plan)

        opened = None
        if plan.next_step is not None:
            opened = self._append(model, plan.next_step, flush=False)

        self._apply_status(model, plan.new_status)
        self._flush(plan.request_id, "transition", plan=plan)

        logger.info(
            "request_transitioned",
            extra={
                "request_id": plan.request_id,
                "request_type": plan.request_type.value,
                "action": plan.action.value,
                "from_status": plan.expected_status,
                "to_status": plan.new_status,
                "actor_id": plan.actor.actor_id,
                "acting_role": plan.acting_role,
                "resolved_step": pending.sequence,
            },
        )

        return TransitionResult(
            request=model.to_dto(),
            resolved_step=pending.to_dto(),
            opened_step=opened.to_dto() if opened is not None else None,
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _load(
        self,
        request_id: str,
        request_type: RequestType | str,
        lock: bool = False,
    ) -> TravelRequestModel:
        request_type = routing_for(request_type).request_type
        stmt = select(TravelRequestModel).where(
            TravelRequestModel.request_id == request_id,
            TravelRequestModel.request_type == request_type.value,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(request_id, request_type.value)
        return model

    @staticmethod
    def _pending_model(model: TravelRequestModel) -> ApprovalStepModel | None:
        for step in model.steps:
            if step.status == StepStatus.PENDING.value:
                return step
        return None

    def _append(
        self,
        model: TravelRequestModel,
        template: StepTemplate,
        flush: bool = True,
    ) -> ApprovalStepModel:
        if self._pending_model(model) is not None:
            raise InvalidTransitionError(
                model.request_id,
                model.status,
                "append_step",
                reason="request already has a pending step",
            )
        next_sequence = self.session.execute(
            select(func.coalesce(func.max(ApprovalStepModel.sequence), 0)).where(
                ApprovalStepModel.travel_request_id == model.id,
            )
        ).scalar_one() + 1
        step = ApprovalStepModel(
            sequence=next_sequence,
            step_role=template.step_role,
            step_name=template.step_name,
            status=StepStatus.PENDING.value,
            assigned_to=template.assigned_to,
            opened_at=self.clock.now(),
        )
        model.steps.append(step)
        if flush:
            self._flush(model.request_id, "append_step")
        return step

    def _apply_status(self, model: TravelRequestModel, new_status: str) -> None:
        if model.status == RequestStatus.DRAFT and new_status != RequestStatus.DRAFT:
            if model.submitted_at is None:
                model.submitted_at = self.clock.now()
        model.status = new_status
        model.updated_at = self.clock.now()

    def _flush(
        self,
        request_id: str,
        operation: str,
        plan: TransitionPlan | None = None,
        expected_status: str | None = None,
    ) -> None:
        """Flush, translating driver and ORM failures into workflow errors.

        A lost version check or a second Pending step means a concurrent
        writer got there first; both surface as StaleTransitionError.
        """
        expected = plan.expected_status if plan else expected_status
        try:
            self.session.flush()
        except StaleDataError:
            raise StaleTransitionError(
                request_id,
                expected or "",
                "<changed concurrently>",
                plan.expected_step if plan else None,
            ) from None
        except IntegrityError as exc:
            if plan is not None:
                raise StaleTransitionError(
                    request_id,
                    plan.expected_status,
                    "<changed concurrently>",
                    plan.expected_step,
                ) from exc
            raise PersistenceFailureError(request_id, operation, str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(request_id, operation, str(exc)) from exc

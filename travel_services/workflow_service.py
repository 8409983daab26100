"""
travel_services.workflow_service -- Inbound workflow action surface.

Responsibility:
    The single entry point the API/UI layer calls to create, submit and
    act on travel requests.  Thin coordinator: evaluation is delegated to
    the pure transition engine, persistence to EntityStore, run tracking
    to ExecutionTracker, capability checks to the injected
    PermissionOracle and outbound messages to the NotificationDispatcher.

Architecture position:
    Services layer.  May import from travel_engines/ (pure engines) and
    travel_kernel/ (domain, services, db).

Flow of one action:
    1. Short transaction: load the request snapshot and start a
       ``running`` execution.  If another evaluation is running against
       the same pending step the caller lost the race: StaleTransitionError.
       Any other running evaluation gives AlreadyRunningError.
    2. Evaluate the transition against the snapshot (pure; the oracle is
       consulted here).
    3. One transaction: EntityStore.transition() re-reads under lock,
       resolves the pending step, opens the next one and writes the status.
    4. After commit: dispatch the notification, best-effort.
    5. Short transaction: complete the execution with the new status.
    Any error in 2-3 fails the execution and is re-raised as a typed
    WorkflowError (a collaborator's own exception is wrapped in
    CollaboratorFailureError); the request itself is untouched because
    step 3 rolled back.

Timeouts are processed on demand by ``process_timeouts(now)``, which runs
each due step through the same flow as the system actor.  There is no
background loop.

Invariants enforced:
    - Explicit context passing: the oracle, dispatcher and clock are
      injected; nothing is read from ambient session state.
    - Notification failures never fail the action.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from functools import partial
from typing import Any, Callable, Mapping
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from travel_engines.transition import (
    DEFAULT_ADMIN_OVERRIDE,
    TIMEOUT_ACTOR,
    available_actions,
    evaluate_timeout,
    evaluate_transition,
)
from travel_kernel.db.engine import build_engine, session_factory_for, session_scope
from travel_kernel.domain.clock import Clock, SystemClock
from travel_kernel.domain.request import (
    Actor,
    ApprovalStepRecord,
    Requestor,
    RequestType,
    TransitionPlan,
    TransitionResult,
    TravelRequest,
    WorkflowAction,
    WorkflowExecution,
)
from travel_kernel.domain.routing import SHORTEST_TIMEOUT_DAYS, Role, routing_for
from travel_kernel.exceptions import (
    AlreadyRunningError,
    CollaboratorFailureError,
    PersistenceFailureError,
    StaleTransitionError,
    UnauthorizedActorError,
    WorkflowError,
)
from travel_kernel.logging_config import LogContext, configure_logging, get_logger
from travel_kernel.services.entity_store import EntityStore
from travel_kernel.services.execution_tracker import ExecutionTracker
from travel_services.notifications import (
    ApprovalNotification,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    QueuedNotificationDispatcher,
    SubmissionNotification,
)
from travel_services.permissions import PermissionOracle

logger = get_logger("services.workflow_service")

# Payload keys that describe the requestor; everything else is request data
_REQUESTOR_KEYS = frozenset({
    "requestor_name",
    "requestor_staff_id",
    "requestor_email",
    "department",
    "context",
    "additional_data",
})

_SUBMISSION_ACTIONS = frozenset({WorkflowAction.SUBMIT, WorkflowAction.RESUBMIT})

# snapshot -> plan; raises WorkflowError when the snapshot does not allow it
PlanBuilder = Callable[[TravelRequest], TransitionPlan]


class WorkflowService:
    """Create, submit and act on travel requests.

    Contract:
        Each public call owns its transactions through ``session_scope``;
        callers never commit.  Every workflow failure is a typed
        ``WorkflowError`` carrying ``code`` and ``to_dict()``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        permission_oracle: PermissionOracle,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        admin_override_capability: str | None = DEFAULT_ADMIN_OVERRIDE,
        id_timezone: str | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._oracle = permission_oracle
        self._dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._clock = clock or SystemClock()
        self._admin_override = admin_override_capability
        self._id_timezone = ZoneInfo(id_timezone) if id_timezone else None

    @classmethod
    def from_settings(
        cls,
        settings,
        permission_oracle: PermissionOracle,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
    ) -> WorkflowService:
        """Build a service from ``WorkflowSettings``.

        Installs JSON logging at ``log_level`` unless logging is already
        configured.  Without an explicit dispatcher, notifications are
        logged through a worker pool sized by ``notification_workers``.
        """
        configure_logging(level=settings.logging_level)
        engine = build_engine(settings.database_url, echo=settings.echo_sql)
        factory = session_factory_for(engine)
        if dispatcher is None:
            dispatcher = QueuedNotificationDispatcher(
                LoggingNotificationDispatcher(),
                max_workers=settings.notification_workers,
            )
        return cls(
            factory,
            permission_oracle,
            dispatcher=dispatcher,
            clock=clock,
            admin_override_capability=settings.admin_override_capability,
            id_timezone=settings.id_timezone,
        )

    # -------------------------------------------------------------------------
    # Inbound actions
    # -------------------------------------------------------------------------

    def create_draft(
        self,
        request_type: RequestType | str,
        payload: Mapping[str, Any],
        actor_id: str,
    ) -> TravelRequest:
        """Create a Draft request without submitting it."""
        request_type = routing_for(request_type).request_type
        requestor = Requestor(
            name=payload.get("requestor_name") or actor_id,
            staff_id=payload.get("requestor_staff_id") or actor_id,
            department=payload.get("department") or "",
            email=payload.get("requestor_email"),
        )
        additional = dict(payload.get("additional_data") or {})
        additional.update(
            {k: v for k, v in payload.items() if k not in _REQUESTOR_KEYS}
        )

        with session_scope(self._session_factory) as session:
            request = self._store(session).create_request(
                request_type,
                requestor,
                context=payload.get("context"),
                additional_data=additional,
            )
        return request

    def submit_request(
        self,
        request_type: RequestType | str,
        payload: Mapping[str, Any],
        actor_id: str,
        actor_name: str | None = None,
    ) -> TransitionResult:
        """Create a request and submit it into its approval chain.

        ``payload`` carries ``requestor_name``, ``requestor_staff_id``
        (defaults to ``actor_id``), ``requestor_email``, ``department``,
        ``context`` (identifier context, e.g. destination) and
        ``additional_data``; any other key is stored in
        ``additional_data`` as well.

        If submission fails the Draft remains and can be submitted later
        with ``act_on_request(..., "submit", ...)``.
        """
        draft = self.create_draft(request_type, payload, actor_id)
        return self.act_on_request(
            draft.request_id,
            draft.request_type,
            WorkflowAction.SUBMIT,
            actor_id,
            actor_name=actor_name,
        )

    def act_on_request(
        self,
        request_id: str,
        request_type: RequestType | str,
        action: WorkflowAction | str,
        actor_id: str,
        comment: str | None = None,
        actor_name: str | None = None,
        expected_status: str | None = None,
        expected_step: int | None = None,
        delegate_to: str | None = None,
    ) -> TransitionResult:
        """Apply ``action`` to the request as ``actor_id``.

        ``expected_status`` / ``expected_step`` pin the action to the state
        the caller saw; if the request has moved on the call fails with
        StaleTransitionError instead of acting on the newer step.
        ``delegate_to`` names the staff id a ``delegate`` action hands the
        step to.

        Raises:
            UnknownRequestTypeError: For a type without routing rows.
            InvalidTransitionError: Unknown action, terminal status, an
                action the current step does not allow, or a bad delegatee.
            UnauthorizedActorError: Actor lacks the step's capability.
            StaleTransitionError: A concurrent action resolved the step
                first, or is evaluating the same step right now.
            AlreadyRunningError: Another evaluation of this request is running.
            PersistenceFailureError: The transaction could not be written.
            CollaboratorFailureError: The permission oracle raised.
        """
        request_type = routing_for(request_type).request_type
        actor = Actor(actor_id=actor_id, name=actor_name or "")
        plan_for = partial(
            self._plan_action,
            action=action,
            actor=actor,
            comment=comment,
            delegate_to=delegate_to,
            expected_status=expected_status,
            expected_step=expected_step,
        )

        with LogContext.bind(
            request_id=request_id,
            request_type=request_type.value,
            actor_id=actor_id,
        ):
            return self._execute(
                request_id,
                request_type,
                str(getattr(action, "value", action)),
                actor_id,
                plan_for,
                expected_step,
            )

    def process_timeouts(self, now: datetime | None = None) -> tuple[TransitionResult, ...]:
        """Escalate or auto-approve every step whose timeout has passed.

        Runs once per call; scheduling is the caller's concern.  A request
        that moves or is busy while the sweep runs is skipped and picked
        up by the next call.

        Returns:
            One result per step the sweep closed, oldest step first.
        """
        now = now or self._clock.now()
        cutoff = now - timedelta(days=SHORTEST_TIMEOUT_DAYS)
        with session_scope(self._session_factory) as session:
            candidates = self._store(session).list_pending_opened_by(cutoff)

        results = []
        for request in candidates:
            plan = evaluate_timeout(request, now)
            if plan is None:
                continue
            with LogContext.bind(
                request_id=request.request_id,
                request_type=request.request_type.value,
                actor_id=TIMEOUT_ACTOR.actor_id,
            ):
                try:
                    result = self._execute(
                        request.request_id,
                        request.request_type,
                        plan.action.value,
                        TIMEOUT_ACTOR.actor_id,
                        partial(
                            self._plan_timeout,
                            now=now,
                            expected_status=plan.expected_status,
                            expected_step=plan.expected_step,
                        ),
                        plan.expected_step,
                    )
                except (StaleTransitionError, AlreadyRunningError) as exc:
                    logger.info(
                        "timeout_skipped",
                        extra={"action": plan.action.value, "reason": exc.code},
                    )
                    continue
                except WorkflowError as exc:
                    logger.error(
                        "timeout_failed",
                        extra={
                            "action": plan.action.value,
                            "error_code": exc.code,
                            "error": str(exc),
                        },
                    )
                    continue
            results.append(result)

        logger.info(
            "timeouts_processed",
            extra={"candidates": len(candidates), "processed": len(results)},
        )
        return tuple(results)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_execution_status(
        self, request_id: str, request_type: RequestType | str,
    ) -> WorkflowExecution | None:
        request_type = routing_for(request_type).request_type
        with session_scope(self._session_factory) as session:
            return ExecutionTracker(session, self._clock).get_execution_status(
                request_id, request_type,
            )

    def get_request(
        self, request_id: str, request_type: RequestType | str,
    ) -> TravelRequest:
        with session_scope(self._session_factory) as session:
            return self._store(session).get_request(request_id, request_type)

    def get_request_history(
        self, request_id: str, request_type: RequestType | str,
    ) -> tuple[ApprovalStepRecord, ...]:
        """Approval steps of the request, oldest first."""
        with session_scope(self._session_factory) as session:
            return self._store(session).get_steps(request_id, request_type)

    def approval_queue(
        self, request_type: RequestType | str, actor_id: str,
    ) -> tuple[TravelRequest, ...]:
        """Requests of ``request_type`` that ``actor_id`` may approve now.

        Includes steps delegated to the actor and steps escalated to
        workflow administrators.
        """
        routing = routing_for(request_type)
        actor = Actor(actor_id=actor_id)
        roles = {e.required_role for e in routing.entries if not e.requestor_owned}
        roles.add(Role.ADMIN_OVERRIDE)

        queue: dict[str, TravelRequest] = {}
        with session_scope(self._session_factory) as session:
            store = self._store(session)
            for role in sorted(roles):
                for request in store.list_awaiting_role(routing.request_type, role):
                    try:
                        actions = available_actions(
                            request, actor, self._oracle.has_permission,
                            self._admin_override,
                        )
                    except Exception as exc:
                        raise CollaboratorFailureError(
                            request.request_id, "approval_queue",
                            f"{type(exc).__name__}: {exc}",
                        ) from exc
                    if WorkflowAction.APPROVE in actions:
                        queue.setdefault(request.request_id, request)
        return tuple(queue.values())

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _store(self, session: Session) -> EntityStore:
        return EntityStore(session, self._clock, id_timezone=self._id_timezone)

    def _execute(
        self,
        request_id: str,
        request_type: RequestType,
        action_label: str,
        actor_id: str,
        plan_for: PlanBuilder,
        expected_step: int | None = None,
    ) -> TransitionResult:
        """Run one tracked evaluation: begin, plan, transition, notify, complete."""
        snapshot, execution_id = self._begin(
            request_id, request_type, action_label, actor_id, expected_step,
        )
        with LogContext.bind(execution_id=str(execution_id)):
            try:
                plan = plan_for(snapshot)
                with session_scope(self._session_factory) as session:
                    result = self._store(session).transition(plan)
            except UnauthorizedActorError as exc:
                logger.warning(
                    "transition_unauthorized",
                    extra={
                        "action": action_label,
                        "current_status": snapshot.status,
                        "required_role": exc.required_role,
                        "required_capability": exc.required_capability,
                    },
                )
                self._fail(execution_id, exc)
                raise
            except WorkflowError as exc:
                self._fail(execution_id, exc)
                raise
            except SQLAlchemyError as exc:
                failure = PersistenceFailureError(request_id, "transition", str(exc))
                self._fail(execution_id, failure)
                raise failure from exc
            except Exception as exc:
                failure = CollaboratorFailureError(
                    request_id, action_label, f"{type(exc).__name__}: {exc}",
                )
                logger.error(
                    "transition_collaborator_failed",
                    exc_info=True,
                    extra={"action": action_label, "current_status": snapshot.status},
                )
                self._fail(execution_id, failure)
                raise failure from exc

            self._notify(result, plan)
            self._complete(execution_id, result.request.status)

        return TransitionResult(
            request=result.request,
            resolved_step=result.resolved_step,
            opened_step=result.opened_step,
            execution_id=execution_id,
        )

    def _begin(
        self,
        request_id: str,
        request_type: RequestType,
        action_label: str,
        actor_id: str,
        expected_step: int | None = None,
    ) -> tuple[TravelRequest, UUID]:
        """Load the snapshot and open the execution record (own transaction)."""
        target_step = expected_step
        try:
            with session_scope(self._session_factory) as session:
                snapshot = self._store(session).get_request(request_id, request_type)
                pending = snapshot.pending_step
                if target_step is None and pending is not None:
                    target_step = pending.sequence
                entry = routing_for(request_type).entry_for(snapshot.status)
                execution_id = ExecutionTracker(session, self._clock).start_execution(
                    request_id,
                    request_type,
                    context={
                        "status": snapshot.status,
                        "pending_step": pending.sequence if pending else None,
                        "required_role": entry.required_role if entry else None,
                        "department": snapshot.requestor.department,
                        "additional_data": snapshot.additional_data,
                    },
                    action=action_label,
                    actor_id=actor_id,
                )
        except AlreadyRunningError:
            self._raise_if_contended(request_id, request_type, target_step)
            raise
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(request_id, "start_execution", str(exc)) from exc
        return snapshot, execution_id

    def _raise_if_contended(
        self,
        request_id: str,
        request_type: RequestType,
        target_step: int | None,
    ) -> None:
        """Turn a lost race for ``target_step`` into StaleTransitionError.

        The step is contended when another evaluation is running against
        it, or when it is no longer the pending step.  Anything else (an
        abandoned execution, an evaluation of a different step) stays an
        AlreadyRunningError.
        """
        if target_step is None:
            return
        try:
            with session_scope(self._session_factory) as session:
                current = self._store(session).get_request(request_id, request_type)
                latest = ExecutionTracker(session, self._clock).get_execution_status(
                    request_id, request_type,
                )
        except SQLAlchemyError as exc:
            raise PersistenceFailureError(request_id, "start_execution", str(exc)) from exc
        pending = current.pending_step
        moved = pending is None or pending.sequence != target_step
        racing = (
            latest is not None
            and latest.is_running
            and latest.context.get("pending_step") == target_step
        )
        if moved or racing:
            logger.info(
                "transition_contended",
                extra={"expected_step": target_step, "current_status": current.status},
            )
            raise StaleTransitionError(
                request_id, current.status, current.status, target_step,
            )

    def _plan_action(
        self,
        snapshot: TravelRequest,
        action: WorkflowAction | str,
        actor: Actor,
        comment: str | None,
        delegate_to: str | None,
        expected_status: str | None,
        expected_step: int | None,
    ) -> TransitionPlan:
        self._check_pins(snapshot, expected_status, expected_step)
        return evaluate_transition(
            snapshot,
            action,
            actor,
            self._oracle.has_permission,
            admin_override_capability=self._admin_override,
            comment=comment,
            delegate_to=delegate_to,
        )

    def _plan_timeout(
        self,
        snapshot: TravelRequest,
        now: datetime,
        expected_status: str,
        expected_step: int,
    ) -> TransitionPlan:
        self._check_pins(snapshot, expected_status, expected_step)
        plan = evaluate_timeout(snapshot, now)
        if plan is None:
            # Reassigned since the sweep read it; the new step is not due
            raise StaleTransitionError(
                snapshot.request_id, expected_status, snapshot.status, expected_step,
            )
        return plan

    @staticmethod
    def _check_pins(
        snapshot: TravelRequest,
        expected_status: str | None,
        expected_step: int | None,
    ) -> None:
        pending = snapshot.pending_step
        if (expected_status is not None and snapshot.status != expected_status) or (
            expected_step is not None
            and (pending is None or pending.sequence != expected_step)
        ):
            raise StaleTransitionError(
                snapshot.request_id,
                expected_status or snapshot.status,
                snapshot.status,
                expected_step,
            )

    def _notify(self, result: TransitionResult, plan: TransitionPlan) -> None:
        request = result.request
        try:
            if plan.action in _SUBMISSION_ACTIONS:
                self._dispatcher.send_submission_notification(
                    SubmissionNotification(
                        entity_type=request.request_type.value,
                        entity_id=request.request_id,
                        requestor_name=request.requestor.name,
                        requestor_email=request.requestor.email,
                        department=request.requestor.department,
                    )
                )
            else:
                self._dispatcher.send_approval_notification(
                    ApprovalNotification(
                        entity_type=request.request_type.value,
                        entity_id=request.request_id,
                        requestor_name=request.requestor.name,
                        requestor_email=request.requestor.email,
                        new_status=request.status,
                        approver_name=plan.actor.display_name,
                        comments=plan.comment,
                    )
                )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "notification_dispatch_failed",
                extra={"new_status": request.status, "error": str(exc)},
            )

    def _complete(self, execution_id: UUID, outcome: str) -> None:
        try:
            with session_scope(self._session_factory) as session:
                ExecutionTracker(session, self._clock).complete_execution(
                    execution_id, outcome,
                )
        except (WorkflowError, SQLAlchemyError):
            # The transition is durable; the execution stays running for
            # list_stale_executions() to report
            logger.error("execution_completion_failed", exc_info=True)

    def _fail(self, execution_id: UUID, error: WorkflowError) -> None:
        try:
            with session_scope(self._session_factory) as session:
                ExecutionTracker(session, self._clock).fail_execution(
                    execution_id, error.code, str(error),
                )
        except (WorkflowError, SQLAlchemyError):
            logger.error("execution_failure_not_recorded", exc_info=True)

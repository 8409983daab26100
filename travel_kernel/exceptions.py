"""
Typed Exception Hierarchy for the Travel Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The API layer turns workflow failures into client errors, permission errors
or retry hints.  Parsing message strings for that decision is fragile, so:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.act_on_request(request_id, RequestType.VISA, "approve", actor_id)
    except StaleTransitionError:
        # Someone else resolved the step first -- re-read and resubmit
        ...
    except WorkflowError as e:
        return api_response(status=400, body=e.to_dict())

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowError (base)
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   +-- StaleTransitionError
    |
    +-- AuthorizationError
    |   +-- UnauthorizedActorError
    |
    +-- ExecutionError
    |   +-- AlreadyRunningError
    |   +-- ExecutionNotFoundError
    |   +-- ExecutionNotRunningError
    |
    +-- EntityError
    |   +-- RequestNotFoundError
    |   +-- UnknownRequestTypeError
    |
    +-- PersistenceError
    |   +-- PersistenceFailureError
    |
    +-- CollaboratorError
    |   +-- CollaboratorFailureError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                   | Retry?
----------------|------------------------|----------------------------------
Transition      | INVALID_TRANSITION     | Never (client error)
                | STALE_TRANSITION       | Yes -- re-read status and resubmit
----------------|------------------------|----------------------------------
Authorization   | UNAUTHORIZED           | Never
----------------|------------------------|----------------------------------
Execution       | ALREADY_RUNNING        | Poll get_execution_status first
                | EXECUTION_NOT_FOUND    | Never
                | EXECUTION_NOT_RUNNING  | Never (already finished)
----------------|------------------------|----------------------------------
Entity          | REQUEST_NOT_FOUND      | Never
                | UNKNOWN_REQUEST_TYPE   | Never
----------------|------------------------|----------------------------------
Persistence     | PERSISTENCE_FAILURE    | Yes -- retry the whole action
----------------|------------------------|----------------------------------
Collaborator    | COLLABORATOR_FAILURE   | Yes -- once the oracle is reachable
----------------|------------------------|----------------------------------
Immutability    | IMMUTABILITY_VIOLATION | Never (programming error)

Notification delivery failures are NOT represented here: they are logged by
the dispatcher and never surface as workflow errors.
"""

from typing import Any


class WorkflowError(Exception):
    """
    Base exception for all travel workflow errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "WORKFLOW_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Structured error body: stable kind tag, message, and attributes."""
        body: dict[str, Any] = {"kind": self.code, "message": str(self)}
        for key, value in vars(self).items():
            if not key.startswith("_"):
                body[key] = value
        return body


# Transition-related exceptions


class TransitionError(WorkflowError):
    """Base exception for transition errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """No routing entry exists for the action, or the request is terminal."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        request_id: str,
        current_status: str,
        action: str,
        reason: str = "",
    ):
        self.request_id = request_id
        self.current_status = current_status
        self.action = action
        self.reason = reason
        message = (
            f"Cannot {action} request {request_id} in status '{current_status}'"
        )
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StaleTransitionError(TransitionError):
    """
    The step the caller planned to resolve is no longer Pending.

    Raised when a concurrent action committed first.  Transient: the caller
    may re-read the request and resubmit.
    """

    code: str = "STALE_TRANSITION"

    def __init__(
        self,
        request_id: str,
        expected_status: str,
        actual_status: str,
        expected_step: int | None = None,
    ):
        self.request_id = request_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        self.expected_step = expected_step
        super().__init__(
            f"Request {request_id} changed concurrently: expected status "
            f"'{expected_status}' (step {expected_step}), found '{actual_status}'"
        )


# Authorization exceptions


class AuthorizationError(WorkflowError):
    """Base exception for authorization errors."""

    code: str = "AUTHORIZATION_ERROR"


class UnauthorizedActorError(AuthorizationError):
    """Actor lacks the capability required for the current step."""

    code: str = "UNAUTHORIZED"

    def __init__(
        self,
        request_id: str,
        actor_id: str,
        required_role: str,
        required_capability: str | None,
    ):
        self.request_id = request_id
        self.actor_id = actor_id
        self.required_role = required_role
        self.required_capability = required_capability
        super().__init__(
            f"Actor {actor_id} may not act on request {request_id}: "
            f"step requires role '{required_role}'"
            + (f" (capability '{required_capability}')" if required_capability else "")
        )


# Execution-tracker exceptions


class ExecutionError(WorkflowError):
    """Base exception for execution tracking errors."""

    code: str = "EXECUTION_ERROR"


class AlreadyRunningError(ExecutionError):
    """A Running execution already exists for the request."""

    code: str = "ALREADY_RUNNING"

    def __init__(self, request_id: str, request_type: str, execution_id: str | None = None):
        self.request_id = request_id
        self.request_type = request_type
        self.execution_id = execution_id
        super().__init__(
            f"Workflow execution already running for {request_type} {request_id}"
        )


class ExecutionNotFoundError(ExecutionError):
    """Execution with given ID was not found."""

    code: str = "EXECUTION_NOT_FOUND"

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Workflow execution not found: {execution_id}")


class ExecutionNotRunningError(ExecutionError):
    """Completion or failure was recorded against a finished execution."""

    code: str = "EXECUTION_NOT_RUNNING"

    def __init__(self, execution_id: str, current_status: str):
        self.execution_id = execution_id
        self.current_status = current_status
        super().__init__(
            f"Workflow execution {execution_id} is {current_status}, not running"
        )


# Entity exceptions


class EntityError(WorkflowError):
    """Base exception for request entity errors."""

    code: str = "ENTITY_ERROR"


class RequestNotFoundError(EntityError):
    """Request with given ID and type was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str, request_type: str):
        self.request_id = request_id
        self.request_type = request_type
        super().__init__(f"{request_type} request not found: {request_id}")


class UnknownRequestTypeError(EntityError):
    """Request type has no routing table entry."""

    code: str = "UNKNOWN_REQUEST_TYPE"

    def __init__(self, request_type: str):
        self.request_type = request_type
        super().__init__(f"Unknown request type: {request_type}")


# Persistence exceptions


class PersistenceError(WorkflowError):
    """Base exception for persistence errors."""

    code: str = "PERSISTENCE_ERROR"


class PersistenceFailureError(PersistenceError):
    """
    The transaction could not be flushed or committed.

    Fatal to the current call.  No partial state remains because the whole
    transition runs in one transaction; the caller retries the action.
    """

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, request_id: str, operation: str, detail: str):
        self.request_id = request_id
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Persistence failure during {operation} for request {request_id}: {detail}"
        )


# Collaborator exceptions


class CollaboratorError(WorkflowError):
    """Base exception for failures of injected collaborators."""

    code: str = "COLLABORATOR_ERROR"


class CollaboratorFailureError(CollaboratorError):
    """
    An injected collaborator (typically the permission oracle) raised.

    The original exception is chained as ``__cause__``.  The request is
    unchanged and the execution is recorded as failed, so the caller may
    retry once the collaborator recovers.
    """

    code: str = "COLLABORATOR_FAILURE"

    def __init__(self, request_id: str, operation: str, detail: str):
        self.request_id = request_id
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Collaborator failure during {operation} for request {request_id}: {detail}"
        )

# Immutability exceptions


class ImmutabilityError(WorkflowError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")

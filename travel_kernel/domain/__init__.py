"""
Pure domain layer.

This module contains pure value objects and the routing table
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O

All domain objects are immutable and deterministic.
"""

from travel_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from travel_kernel.domain.request import (
    REQUESTOR_ACTIONS,
    TERMINAL_STATUSES,
    TERMINAL_STEP_OUTCOME,
    Actor,
    ApprovalStepRecord,
    ExecutionStatus,
    Requestor,
    RequestStatus,
    RequestType,
    StepStatus,
    StepTemplate,
    TimeoutAction,
    TransitionPlan,
    TransitionResult,
    TravelRequest,
    WorkflowAction,
    WorkflowExecution,
)
from travel_kernel.domain.routing import (
    ROUTING_TABLE,
    SHORTEST_TIMEOUT_DAYS,
    RequestRouting,
    Role,
    RouteEntry,
    routing_for,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Request types
    "REQUESTOR_ACTIONS",
    "TERMINAL_STATUSES",
    "TERMINAL_STEP_OUTCOME",
    "TimeoutAction",
    "Actor",
    "ApprovalStepRecord",
    "ExecutionStatus",
    "Requestor",
    "RequestStatus",
    "RequestType",
    "StepStatus",
    "StepTemplate",
    "TransitionPlan",
    "TransitionResult",
    "TravelRequest",
    "WorkflowAction",
    "WorkflowExecution",
    # Routing
    "ROUTING_TABLE",
    "SHORTEST_TIMEOUT_DAYS",
    "RequestRouting",
    "Role",
    "RouteEntry",
    "routing_for",
]

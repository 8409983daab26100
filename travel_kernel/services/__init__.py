"""Kernel services: flush-only persistence for requests and executions."""

from travel_kernel.services.base import BaseService
from travel_kernel.services.entity_store import EntityStore
from travel_kernel.services.execution_tracker import ExecutionTracker

__all__ = [
    "BaseService",
    "EntityStore",
    "ExecutionTracker",
]

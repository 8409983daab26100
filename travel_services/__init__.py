"""
travel_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure transition engine and the kernel
    services: the inbound workflow surface, the permission oracle boundary
    and the notification boundary.

Architecture position:
    Services -- orchestration over engines + kernel.

    Dependency direction:
        travel_services/ -> travel_engines/  (allowed)
        travel_services/ -> travel_kernel/   (allowed)
        travel_engines/  -> travel_services/ (FORBIDDEN)
        travel_kernel/   -> travel_services/ (FORBIDDEN)
"""

from travel_services.notifications import (
    ApprovalNotification,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    QueuedNotificationDispatcher,
    SubmissionNotification,
)
from travel_services.permissions import (
    PermissionOracle,
    RoleBasedPermissionOracle,
    StaticPermissionOracle,
)
from travel_services.workflow_service import WorkflowService

__all__ = [
    # Notifications
    "ApprovalNotification",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "QueuedNotificationDispatcher",
    "SubmissionNotification",
    # Permissions
    "PermissionOracle",
    "RoleBasedPermissionOracle",
    "StaticPermissionOracle",
    # Workflow
    "WorkflowService",
]

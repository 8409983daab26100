"""
travel_services.notifications -- Outbound notification boundary.

Responsibility:
    Define the messages the workflow emits after a committed transition
    and the dispatcher interface that carries them.  Delivery (email,
    in-app) lives outside this package.

Architecture position:
    Services layer.  WorkflowService calls the dispatcher only after the
    transition transaction has committed.

Invariants:
    - Dispatch is best-effort: a dispatcher failure never reaches the
      caller of the workflow action and never rolls a transition back.
    - QueuedNotificationDispatcher never blocks the caller on delivery.

Failure modes:
    - Delegate exceptions inside the queue are logged as
      ``notification_delivery_failed`` and dropped.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Protocol, runtime_checkable

from travel_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class ApprovalNotification:
    """Sent after an approve, reject or cancel commits."""

    entity_type: str
    entity_id: str
    requestor_name: str
    requestor_email: str | None
    new_status: str
    approver_name: str
    comments: str | None = None


@dataclass(frozen=True)
class SubmissionNotification:
    """Sent after a request leaves Draft."""

    entity_type: str
    entity_id: str
    requestor_name: str
    requestor_email: str | None
    department: str


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Outbound notification interface."""

    def send_approval_notification(self, notification: ApprovalNotification) -> None:
        ...

    def send_submission_notification(self, notification: SubmissionNotification) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that records each notification as a structured log line.

    Default sink when no delivery transport is configured.
    """

    def send_approval_notification(self, notification: ApprovalNotification) -> None:
        logger.info("approval_notification", extra=asdict(notification))

    def send_submission_notification(self, notification: SubmissionNotification) -> None:
        logger.info("submission_notification", extra=asdict(notification))


class QueuedNotificationDispatcher:
    """Fire-and-forget wrapper that hands notifications to a worker pool.

    Contract:
        ``send_*`` enqueue and return immediately.  Failures in the
        delegate are logged, never raised.  ``flush()`` waits for queued
        deliveries, ``shutdown()`` stops the pool.
    """

    def __init__(
        self,
        delegate: NotificationDispatcher,
        max_workers: int = 2,
    ) -> None:
        self._delegate = delegate
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="travel-notify",
        )
        self._pending: set[Future] = set()
        self._lock = Lock()

    def send_approval_notification(self, notification: ApprovalNotification) -> None:
        self._enqueue(self._delegate.send_approval_notification, notification)

    def send_submission_notification(self, notification: SubmissionNotification) -> None:
        self._enqueue(self._delegate.send_submission_notification, notification)

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for queued deliveries.  Returns True if all finished."""
        with self._lock:
            pending = set(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _enqueue(self, send, notification) -> None:
        future = self._executor.submit(send, notification)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(
            lambda f, n=notification: self._on_done(f, n),
        )

    def _on_done(self, future: Future, notification) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "entity_type": notification.entity_type,
                    "entity_id": notification.entity_id,
                    "notification": type(notification).__name__,
                    "error": str(exc),
                },
            )

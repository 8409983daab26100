"""
Pytest fixtures for the travel workflow test suite.

Provides:
- In-memory SQLite engine, session factory and session (no server needed)
- Deterministic clock
- Static permission oracle with one actor per approval role
- Recording notification dispatchers
- Captured structured logs
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest

from travel_kernel.db.engine import build_engine, create_tables, session_factory_for
from travel_kernel.domain.clock import DeterministicClock
from travel_kernel.domain.request import RequestType
from travel_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from travel_kernel.services.entity_store import EntityStore
from travel_kernel.services.execution_tracker import ExecutionTracker
from travel_services.permissions import StaticPermissionOracle
from travel_services.workflow_service import WorkflowService

# Staff ids used across the suite
REQUESTOR_ID = "S0001"
FOCAL_ID = "S1001"
SECOND_FOCAL_ID = "S1002"
MANAGER_ID = "S2001"
CLERK_ID = "S3001"
ADMIN_ID = "ADMIN01"
OUTSIDER_ID = "S9999"

FOCAL_CAPABILITIES = (
    "approve_transport_focal",
    "approve_accommodation_focal",
    "approve_visa_focal",
    "approve_trf_focal",
    "approve_claims_focal",
)
MANAGER_CAPABILITIES = (
    "approve_transport_manager",
    "approve_accommodation_manager",
    "approve_visa_manager",
    "approve_trf_manager",
    "approve_claims_hod",
)
CLERK_CAPABILITIES = (
    "process_transport_requests",
    "manage_accommodation_bookings",
    "process_visa_applications",
    "manage_flights",
    "process_claims",
)


def make_payload(**overrides):
    """Submission payload for the default requestor."""
    payload = {
        "requestor_name": "Aisha Rahman",
        "requestor_staff_id": REQUESTOR_ID,
        "requestor_email": "aisha.rahman@example.com",
        "department": "Engineering",
        "context": "KUL",
        "purpose": "Site visit",
    }
    payload.update(overrides)
    return payload


class RecordingDispatcher:
    """NotificationDispatcher that keeps every message it is handed."""

    def __init__(self):
        self.approvals = []
        self.submissions = []

    def send_approval_notification(self, notification):
        self.approvals.append(notification)

    def send_submission_notification(self, notification):
        self.submissions.append(notification)


class FailingDispatcher:
    """NotificationDispatcher whose transport is down."""

    def send_approval_notification(self, notification):
        raise ConnectionError("smtp relay unreachable")

    def send_submission_notification(self, notification):
        raise ConnectionError("smtp relay unreachable")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """JSON logging at DEBUG for the whole run; captured_logs taps into it."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Each test starts with no request, actor or correlation bound."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture travel_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.act_on_request(...)
            logs = captured_logs()
            assert any(r["message"] == "request_transitioned" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("travel_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    eng = build_engine("sqlite://")
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return session_factory_for(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a file database, for multi-connection tests."""
    eng = build_engine(f"sqlite:///{tmp_path / 'workflow.db'}")
    create_tables(eng)
    yield session_factory_for(eng)
    eng.dispose()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(
        fixed_time=datetime(2025, 7, 2, 14, 23, 0, tzinfo=timezone.utc),
    )


@pytest.fixture
def oracle():
    return StaticPermissionOracle({
        FOCAL_ID: FOCAL_CAPABILITIES,
        SECOND_FOCAL_ID: FOCAL_CAPABILITIES,
        MANAGER_ID: MANAGER_CAPABILITIES,
        CLERK_ID: CLERK_CAPABILITIES,
        ADMIN_ID: ("manage_workflows",),
    })


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def store(db_session, clock):
    return EntityStore(db_session, clock)


@pytest.fixture
def tracker(db_session, clock):
    return ExecutionTracker(db_session, clock)


@pytest.fixture
def service(session_factory, oracle, dispatcher, clock):
    return WorkflowService(session_factory, oracle, dispatcher, clock=clock)


@pytest.fixture
def submitted(service):
    """Factory: create and submit a request, returning the TransitionResult."""

    def _submit(request_type=RequestType.TRANSPORT, **overrides):
        return service.submit_request(request_type, make_payload(**overrides), REQUESTOR_ID)

    return _submit

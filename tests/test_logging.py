"""Tests for the structured logging system (travel_kernel/logging_config.py)."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from travel_kernel.exceptions import StaleTransitionError, UnauthorizedActorError
from travel_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state, then restore the suite configuration."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """JSON log output format."""

    def test_envelope_and_extra_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        get_logger("test").info("request_transitioned", extra={"to_status": "Approved"})

        [record] = _parse_all_logs(stream)
        assert record["message"] == "request_transitioned"
        assert record["level"] == "INFO"
        assert record["logger"] == "travel_kernel.test"
        assert record["to_status"] == "Approved"
        assert "ts" in record

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        with LogContext.bind(request_id="TRN-20250702-1423-LOCAL-ABCD", actor_id="S1001"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = _parse_all_logs(stream)
        assert inside["request_id"] == "TRN-20250702-1423-LOCAL-ABCD"
        assert inside["actor_id"] == "S1001"
        assert "request_id" not in outside

    def test_workflow_error_fields_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)

        try:
            raise StaleTransitionError(
                "TRN-20250702-1423-LOCAL-ABCD", "Pending Department Focal",
                "Pending Line Manager/HOD", 2,
            )
        except StaleTransitionError:
            get_logger("test").error("transition_failed", exc_info=True)

        [record] = _parse_all_logs(stream)
        assert record["exc_type"] == "StaleTransitionError"
        assert record["exc_code"] == "STALE_TRANSITION"
        assert record["exc_expected_step"] == 2
        assert "traceback" in record

    def test_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        execution_id = uuid4()

        get_logger("test").info("execution_started", extra={"execution": execution_id})

        [record] = _parse_all_logs(stream)
        assert record["execution"] == str(execution_id)


class TestLogContext:

    def test_bind_restores_previous_values(self):
        LogContext.set(request_id="outer")

        with LogContext.bind(request_id="inner", execution_id="e-1"):
            assert LogContext.get_all() == {"request_id": "inner", "execution_id": "e-1"}

        assert LogContext.get_all() == {"request_id": "outer"}

    def test_clear(self):
        LogContext.set(correlation_id="c-1", request_type="visa")
        LogContext.clear()

        assert LogContext.get_all() == {}


class TestConfigureLogging:

    def test_idempotent(self):
        handler, _ = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=logging.NullHandler())

        assert logging.getLogger("travel_kernel").handlers == [handler]

    def test_loggers_live_under_travel_kernel(self):
        assert get_logger("services.entity_store").name == "travel_kernel.services.entity_store"


class TestErrorBodies:

    def test_to_dict_carries_kind_and_fields(self):
        error = UnauthorizedActorError(
            "VIS-20250702-1423-GEN-ABCD", "S9999", "Visa Clerk", "process_visa_applications",
        )

        body = error.to_dict()

        assert body["kind"] == "UNAUTHORIZED"
        assert body["actor_id"] == "S9999"
        assert body["required_capability"] == "process_visa_applications"
        assert "S9999" in body["message"]

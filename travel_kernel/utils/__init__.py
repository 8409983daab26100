"""Utility modules for the travel kernel."""

from travel_kernel.utils.request_ids import (
    ParsedRequestId,
    generate_request_id,
    parse_request_id,
    sanitize_context,
)

__all__ = [
    "ParsedRequestId",
    "generate_request_id",
    "parse_request_id",
    "sanitize_context",
]

"""
Request identifier generation.

Request identifiers are the human-facing key of a request (the UUID
primary key is internal).  Two layouts exist:

    General: TYPE-YYYYMMDD-HHMM-CONTEXT-XXXX   e.g. TSR-20250702-1423-NYC-PCYX
    Claims:  CLM-YYYYMMDD-HHMM-XXXXX-XXXX      e.g. CLM-20250702-1423-QWSDF-P4Z5

The unique parts use an alphabet without look-alike characters (no 0/O,
1/I).  Uniqueness is enforced by the unique column on
``travel_requests.request_id``; callers regenerate on collision.
"""

import random
import re
from dataclasses import dataclass
from datetime import datetime

UNIQUE_ID_CHARS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CLAIM_PREFIX = "CLM"
FALLBACK_CONTEXT = "GEN"
MAX_CONTEXT_LENGTH = 5

_system_random = random.SystemRandom()
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


@dataclass(frozen=True)
class ParsedRequestId:
    """Components of a request identifier."""

    prefix: str
    timestamp: datetime
    context: str
    unique_id: str


def generate_unique_id(length: int = 4, rng: random.Random | None = None) -> str:
    """Random string of ``length`` characters from ``UNIQUE_ID_CHARS``."""
    chooser = rng or _system_random
    return "".join(chooser.choice(UNIQUE_ID_CHARS) for _ in range(length))


def sanitize_context(context: str | None) -> str:
    """
    Upper-case alphanumerics only, at most five characters.

    An empty result falls back to ``GEN`` so the identifier never carries
    an empty segment.
    """
    cleaned = _NON_ALNUM.sub("", context or "").upper()[:MAX_CONTEXT_LENGTH]
    return cleaned or FALLBACK_CONTEXT


def generate_request_id(
    prefix: str,
    context: str | None,
    when: datetime,
    rng: random.Random | None = None,
) -> str:
    """
    Generate a request identifier.

    Args:
        prefix: Type prefix (TSR, VIS, ACCOM, TRN, CLM).
        context: Free-form context such as a destination; ignored for claims.
        when: Timestamp embedded in the identifier (taken from the clock).
        rng: Optional random source, for reproducible identifiers in tests.

    Returns:
        Formatted request identifier.

    Example:
        >>> generate_request_id("TRN", "local", clock.now())
        "TRN-20250702-1423-LOCAL-3K8M"
    """
    stamp = when.strftime("%Y%m%d-%H%M")
    if prefix == CLAIM_PREFIX:
        return (
            f"{prefix}-{stamp}-{generate_unique_id(5, rng)}-{generate_unique_id(4, rng)}"
        )
    return f"{prefix}-{stamp}-{sanitize_context(context)}-{generate_unique_id(4, rng)}"


def parse_request_id(request_id: str) -> ParsedRequestId:
    """
    Parse a request identifier into its components.

    For claims the context is reported as ``CLAIM`` and the unique id
    joins both random segments.

    Raises:
        ValueError: If the identifier does not have five segments or an
            unparseable timestamp.
    """
    parts = request_id.split("-")
    if len(parts) != 5:
        raise ValueError(f"Invalid request id format: {request_id}")
    prefix, date_part, time_part, third, fourth = parts
    try:
        timestamp = datetime.strptime(f"{date_part}{time_part}", "%Y%m%d%H%M")
    except ValueError:
        raise ValueError(f"Invalid request id timestamp: {request_id}") from None

    if prefix == CLAIM_PREFIX:
        return ParsedRequestId(prefix, timestamp, "CLAIM", f"{third}-{fourth}")
    return ParsedRequestId(prefix, timestamp, third, fourth)

"""
Time source for the workflow core.

Step timestamps, request ``updated_at`` stamps, execution start/finish
times and the date embedded in generated request identifiers all come
from an injected ``Clock``.  Nothing below the service layer reads the
system time itself.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# 2025-07-02 14:23 UTC; the default instant for tests
_EPOCH = datetime(2025, 7, 2, 14, 23, tzinfo=timezone.utc)


class Clock(ABC):
    """Something that can say what time it is, always timezone-aware."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` keeps returning the same instant until the test moves it
    forward with ``advance()``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or _EPOCH

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> datetime:
        """Move forward ``seconds`` and return the new instant."""
        self._current += timedelta(seconds=seconds)
        return self._current

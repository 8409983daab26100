"""
Shared constructor for the persistence services.

EntityStore and ExecutionTracker both work inside a session they are
handed and write with ``session.flush()``.  Whoever opened the session
(``WorkflowService`` through ``session_scope``, or a test) decides whether
the unit of work commits, so a resolved step, its successor and the new
request status land together or not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from travel_kernel.db.base import Base
from travel_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Holds the caller's session and the clock used for timestamps.

    Subclasses flush; they never commit or roll back.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

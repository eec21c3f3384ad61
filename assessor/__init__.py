"""Assessor package initialization.

Re-exports the pieces needed to embed an assessment session in another
front end, so applications can simply `import assessor`.
"""

from __future__ import annotations

from .app.events import EventBus
from .app.resume import ResumeConsistencyError
from .app.scheduler import ManualScheduler, ThreadScheduler
from .app.session_manager import InvalidTransitionError, SessionManager, SessionState
from .remote.base import StoreError, StoreTimeout
from .results.schema import (
    AnswerRecord,
    AttemptResult,
    Question,
    SessionSnapshot,
    TestDefinition,
    TestStatus,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AnswerRecord",
    "AttemptResult",
    "EventBus",
    "InvalidTransitionError",
    "ManualScheduler",
    "Question",
    "ResumeConsistencyError",
    "SessionManager",
    "SessionSnapshot",
    "SessionState",
    "StoreError",
    "StoreTimeout",
    "TestDefinition",
    "TestStatus",
    "ThreadScheduler",
]

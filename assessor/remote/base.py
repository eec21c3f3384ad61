from __future__ import annotations

"""Store capabilities the session engine depends on.

The engine only talks to a Progress Store and a Result Store through these
protocols; the HTTP client and the in-memory fake both satisfy them.
"""

from typing import List, Optional, Protocol

from ..results.schema import AttemptResult, Mode, SessionSnapshot, TestDefinition, TestStatus


class StoreError(Exception):
    """A store call failed (network, HTTP status or malformed reply)."""


class StoreTimeout(StoreError):
    """A store call exceeded its time budget."""


class ProgressStore(Protocol):
    def start_session(self, username: str, test_id: str, mode: Mode, total_questions: int) -> bool: ...

    def get_status(self, username: str, test_id: str) -> Optional[TestStatus]: ...

    def update_progress(self, snapshot: SessionSnapshot) -> bool: ...

    def clear_progress(self, username: str, test_id: str) -> bool: ...


class ResultStore(Protocol):
    def submit_result(self, result: AttemptResult) -> Optional[AttemptResult]: ...


class TrainingStore(ProgressStore, ResultStore, Protocol):
    """Everything the CLI needs: both stores plus catalogue and admin calls."""

    def get_test(self, test_id: str) -> Optional[TestDefinition]: ...

    def list_results(self, username: str) -> List[AttemptResult]: ...

    def reset_attempts(self, username: str, test_id: str, reset_by: str) -> bool: ...

    def grant_attempts(self, username: str, test_id: str, extra_attempts: int, granted_by: str) -> bool: ...

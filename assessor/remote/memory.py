from __future__ import annotations

"""In-memory training store.

Stands in for the remote API in tests and offline CLI runs. It also plays
the server-side Attempt Coordinator: it owns `attempts_used`, assigns the
authoritative attempt number on submit, enforces `max_attempts`, and
exposes the admin reset/grant operations.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..results.schema import AttemptResult, Mode, SessionSnapshot, TestDefinition, TestStatus
from .base import StoreError

Key = Tuple[str, str]


class InMemoryTrainingStore:
    def __init__(
        self,
        tests: Iterable[TestDefinition] = (),
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.tests: Dict[str, TestDefinition] = {t.id: t for t in tests}
        self.clock = clock
        self.calls: List[str] = []
        self._failing: Set[str] = set()
        self._progress: Dict[Key, SessionSnapshot] = {}
        self._results: Dict[Key, List[AttemptResult]] = {}
        self._attempts_used: Dict[Key, int] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    # Failure injection
    def fail(self, *operations: str) -> None:
        self._failing.update(operations)

    def recover(self, *operations: str) -> None:
        if operations:
            self._failing.difference_update(operations)
        else:
            self._failing.clear()

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self._failing:
            raise StoreError(f"{operation} unavailable")

    def call_count(self, operation: str) -> int:
        return sum(1 for c in self.calls if c == operation)

    # Progress store
    def start_session(self, username: str, test_id: str, mode: Mode, total_questions: int) -> bool:
        with self._lock:
            self._enter("start_session")
            self._progress[(username, test_id)] = SessionSnapshot(
                username=username,
                test_id=test_id,
                mode=mode,
                started_at=self.clock(),
                attempt_number=self._attempts_used.get((username, test_id), 0) + 1,
            )
            return True

    def update_progress(self, snapshot: SessionSnapshot) -> bool:
        with self._lock:
            self._enter("update_progress")
            self._progress[(snapshot.username, snapshot.test_id)] = snapshot
            return True

    def clear_progress(self, username: str, test_id: str) -> bool:
        with self._lock:
            self._enter("clear_progress")
            self._progress.pop((username, test_id), None)
            return True

    def get_progress(self, username: str, test_id: str) -> Optional[SessionSnapshot]:
        return self._progress.get((username, test_id))

    def get_status(self, username: str, test_id: str) -> Optional[TestStatus]:
        with self._lock:
            self._enter("get_status")
            key = (username, test_id)
            results = self._results.get(key, [])
            progress = self._progress.get(key)
            in_progress = progress is not None and not progress.completed
            test = self.tests.get(test_id)
            return TestStatus(
                test_id=test_id,
                has_started=bool(results) or progress is not None,
                is_in_progress=in_progress,
                has_passed=any(r.passed for r in results),
                attempts_used=self._attempts_used.get(key, 0),
                max_attempts=test.max_attempts if test else 3,
                best_score=max((r.score for r in results), default=None),
                last_attempt_at=max((r.completed_at for r in results), default=None),
                current_progress=progress if in_progress else None,
            )

    # Result store
    def submit_result(self, result: AttemptResult) -> Optional[AttemptResult]:
        with self._lock:
            self._enter("submit_result")
            key = (result.username, result.test_id)
            test = self.tests.get(result.test_id)
            used = self._attempts_used.get(key, 0)
            if test is not None and used >= test.max_attempts:
                return None
            stored = result.with_updates(id=self._next_id, attempt_number=used + 1)
            self._next_id += 1
            self._attempts_used[key] = used + 1
            self._results.setdefault(key, []).append(stored)
            self._progress.pop(key, None)
            return stored

    def list_results(self, username: str) -> List[AttemptResult]:
        with self._lock:
            self._enter("list_results")
            out: List[AttemptResult] = []
            for (user, _test), results in self._results.items():
                if user == username:
                    out.extend(results)
            return sorted(out, key=lambda r: r.completed_at, reverse=True)

    # Catalogue
    def get_test(self, test_id: str) -> Optional[TestDefinition]:
        with self._lock:
            self._enter("get_test")
            return self.tests.get(test_id)

    # Attempt coordinator (admin)
    def reset_attempts(self, username: str, test_id: str, reset_by: str) -> bool:
        with self._lock:
            self._enter("reset_attempts")
            self._attempts_used[(username, test_id)] = 0
            return True

    def grant_attempts(self, username: str, test_id: str, extra_attempts: int, granted_by: str) -> bool:
        with self._lock:
            self._enter("grant_attempts")
            key = (username, test_id)
            self._attempts_used[key] = max(0, self._attempts_used.get(key, 0) - int(extra_attempts))
            return True

"""Shared builders for the test suite."""

from __future__ import annotations

import random
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from assessor.app.events import EventBus
from assessor.app.scheduler import ManualScheduler
from assessor.app.session_manager import SessionManager
from assessor.remote.memory import InMemoryTrainingStore
from assessor.results.schema import Question, SessionSnapshot, TestDefinition

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_test(
    n: int = 4,
    *,
    passing_score: float = 0.75,
    max_attempts: int = 3,
    randomize_answers: bool = False,
    test_id: str = "t1",
    options: int = 4,
) -> TestDefinition:
    questions = [
        Question(
            id=f"q{i}",
            question=f"Question {i}?",
            options=[f"q{i}-opt{k}" for k in range(options)],
            correct_index=i % options,
            explanation=f"Because {i}.",
            category="even" if i % 2 == 0 else "odd",
        )
        for i in range(n)
    ]
    return TestDefinition(
        id=test_id,
        title=f"Test {test_id}",
        questions=questions,
        passing_score=passing_score,
        max_attempts=max_attempts,
        randomize_answers=randomize_answers,
    )


class HoldingStore(InMemoryTrainingStore):
    """Progress pushes park in the store until `release` is set, once `hold` is on."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.hold = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def update_progress(self, snapshot: SessionSnapshot) -> bool:
        if self.hold:
            self.entered.set()
            self.release.wait(5)
        return super().update_progress(snapshot)


class Recorder:
    """Collects bus events by name."""

    def __init__(self, bus: EventBus, *events: str) -> None:
        self.seen: Dict[str, List[Dict[str, Any]]] = {e: [] for e in events}
        for e in events:
            bus.subscribe(e, self.seen[e].append)

    def __getitem__(self, event: str) -> List[Dict[str, Any]]:
        return self.seen[event]


class Harness:
    """A session wired to in-memory fakes and a manually driven clock."""

    def __init__(
        self,
        test: Optional[TestDefinition] = None,
        *,
        mode: str = "test",
        username: str = "alice",
        store: Optional[InMemoryTrainingStore] = None,
        strict: bool = False,
        seed: int = 7,
        history_sink=None,
    ) -> None:
        self.test = test or make_test()
        self.clock = FakeClock()
        self.store = store or InMemoryTrainingStore(tests=[self.test], clock=self.clock)
        self.scheduler = ManualScheduler()
        self.bus = EventBus()
        self.events = Recorder(
            self.bus, "state_changed", "tick", "answer_recorded", "sync_failed", "resume_fallback", "result_submit_failed"
        )
        self.sm = SessionManager(
            self.test,
            username,
            mode,
            progress_store=self.store,
            result_store=self.store,
            scheduler=self.scheduler,
            bus=self.bus,
            rng=random.Random(seed),
            clock=self.clock,
            strict=strict,
            history_sink=history_sink,
        )

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        self.scheduler.advance(seconds)

    def answer(self, correct: bool) -> None:
        """Answer the current question right or wrong, in display terms."""
        sm = self.sm
        q = sm.current_question
        canonical = q.correct_index if correct else (q.correct_index + 1) % q.option_count
        sm.select_option(sm.deck.to_display(sm.current_index, canonical))
        sm.submit_answer()

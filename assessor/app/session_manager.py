from __future__ import annotations

"""Session Manager: the assessment session state machine.

NotStarted -> AnswerPending <-> AnswerRevealed -> Completed
                         \\-> Abandoned

All mutation goes through the transition methods below. Store access is
confined to the Resume Loader, the Progress Synchronizer and the Result
Submitter, none of which let store errors escape into a transition.
"""

import logging
import random
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from ..deck.question_deck import QuestionDeck
from ..remote.base import ProgressStore, ResultStore
from ..results.schema import (
    MODE_STUDY,
    MODE_TEST,
    AnswerRecord,
    AttemptResult,
    Mode,
    Question,
    SessionSnapshot,
    TestDefinition,
)
from ..results.submitter import HistorySink, ResultSubmitter, SubmissionOutcome, build_answer_details
from ..stats.stats import compute_score
from .events import EventBus
from .explain import trace as xtrace
from .resume import ResumeLoader
from .scheduler import Scheduler, TaskHandle, ThreadScheduler
from .sync import ProgressSynchronizer

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    ANSWER_PENDING = "answer_pending"
    ANSWER_REVEALED = "answer_revealed"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


IN_PROGRESS = {SessionState.ANSWER_PENDING, SessionState.ANSWER_REVEALED}
TERMINAL = {SessionState.COMPLETED, SessionState.ABANDONED}


class InvalidTransitionError(RuntimeError):
    """A transition was requested from a state that does not allow it."""


@dataclass(frozen=True)
class SessionContext:
    username: str
    test: TestDefinition
    mode: Mode


class SessionManager:
    def __init__(
        self,
        test: TestDefinition,
        username: str,
        mode: Mode,
        *,
        progress_store: ProgressStore,
        result_store: ResultStore,
        scheduler: Optional[Scheduler] = None,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sync_interval_s: float = 5.0,
        tick_interval_s: float = 1.0,
        strict: bool = False,
        history_sink: Optional[HistorySink] = None,
    ) -> None:
        if mode not in (MODE_STUDY, MODE_TEST):
            raise ValueError(f"unknown mode {mode!r}")
        self.ctx = SessionContext(username=username, test=test, mode=mode)
        self.progress_store = progress_store
        self.bus = bus or EventBus()
        self.clock = clock
        self.sync_interval_s = sync_interval_s
        self.tick_interval_s = tick_interval_s
        self._owns_scheduler = scheduler is None
        self.scheduler: Scheduler = scheduler or ThreadScheduler()
        self._loader = ResumeLoader(progress_store, strict=strict, bus=self.bus, rng=rng, clock=clock)
        self._submitter = ResultSubmitter(result_store, bus=self.bus, history_sink=history_sink)

        self._lock = threading.RLock()
        self._state = SessionState.NOT_STARTED
        self._deck: Optional[QuestionDeck] = None
        self._answers: List[AnswerRecord] = []
        self._index = 0
        self._selected: Optional[int] = None  # display index
        self._correct = 0
        self._incorrect = 0
        self._started_at: Optional[datetime] = None
        self._last_activity: Optional[datetime] = None
        self._attempt_number = 0
        self._resumed = False
        self._ticker: Optional[TaskHandle] = None
        self._sync: Optional[ProgressSynchronizer] = None
        self._paused = False
        self._closed = False
        self._result: Optional[AttemptResult] = None
        self._submission: Optional[SubmissionOutcome] = None

    # ------------------------------------------------------------------
    # Read-only view
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_study(self) -> bool:
        return self.ctx.mode == MODE_STUDY

    @property
    def in_progress(self) -> bool:
        return self._state in IN_PROGRESS

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def resumed(self) -> bool:
        return self._resumed

    @property
    def deck(self) -> QuestionDeck:
        if self._deck is None:
            raise InvalidTransitionError("session not started")
        return self._deck

    @property
    def total_questions(self) -> int:
        return len(self._answers)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_question(self) -> Question:
        return self.deck[self._index]

    @property
    def display_options(self) -> List[str]:
        return self.deck.display_options(self._index)

    @property
    def selected_display_index(self) -> Optional[int]:
        return self._selected

    @property
    def correct_count(self) -> int:
        return self._correct

    @property
    def incorrect_count(self) -> int:
        return self._incorrect

    @property
    def answers(self) -> List[AnswerRecord]:
        return list(self._answers)

    @property
    def attempt_number(self) -> int:
        """Provisional until the Result Store accepts the attempt."""
        return self._attempt_number

    @property
    def result(self) -> Optional[AttemptResult]:
        return self._result

    @property
    def submission(self) -> Optional[SubmissionOutcome]:
        return self._submission

    @property
    def synchronizer(self) -> Optional[ProgressSynchronizer]:
        return self._sync

    def canonical_selected(self) -> Optional[int]:
        """Canonical index chosen for the current question, if any."""
        record = self._answers[self._index] if self._answers else None
        if record is not None and record.answered:
            return record.selected_index
        if self._selected is None:
            return None
        return self.deck.to_canonical(self._index, self._selected)

    def elapsed_seconds(self) -> int:
        if self._started_at is None:
            return 0
        return max(0, int((self.clock() - self._started_at).total_seconds()))

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            if self._started_at is None:
                raise InvalidTransitionError("session not started")
            return SessionSnapshot(
                username=self.ctx.username,
                test_id=self.ctx.test.id,
                mode=self.ctx.mode,
                started_at=self._started_at,
                current_question_index=self._index,
                correct_count=self._correct,
                incorrect_count=self._incorrect,
                answers=list(self._answers),
                last_activity_at=self._last_activity,
                completed=self.is_terminal,
                attempt_number=self._attempt_number,
            )

    # ------------------------------------------------------------------
    # Transitions
    def _require(self, *states: SessionState) -> None:
        if self._state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransitionError(f"not allowed in state {self._state.value} (needs {allowed})")
        if self._closed:
            raise InvalidTransitionError("session is closed")
        if self._paused:
            raise InvalidTransitionError("session is paused")

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        self._last_activity = self.clock()
        logger.debug("session %s/%s -> %s", self.ctx.username, self.ctx.test.id, state.value)
        self.bus.emit("state_changed", {"state": state.value, "index": self._index})

    def start(self, *, fresh: bool = False) -> None:
        """Resume the stored session if there is one, otherwise start fresh.

        With `fresh=True` any stored progress is cleared first.
        """
        with self._lock:
            self._require(SessionState.NOT_STARTED)
            if not self.ctx.test.questions:
                raise ValueError(f"test {self.ctx.test.id!r} has no questions")
            restored = self._loader.load(self.ctx.test, self.ctx.username, self.ctx.mode, fresh=fresh)
            self._deck = restored.deck
            self._answers = list(restored.answers)
            self._index = restored.current_index
            self._correct = restored.correct_count
            self._incorrect = restored.incorrect_count
            self._started_at = restored.started_at
            self._resumed = restored.resumed
            self._attempt_number = 0 if self.is_study else restored.attempt_number
            self._enter_position(self._index)
            self._start_timers()
            xtrace(
                "session_started",
                {"test": self.ctx.test.id, "mode": self.ctx.mode, "resumed": self._resumed, "attempt": self._attempt_number},
            )

    def select_option(self, display_index: int) -> None:
        with self._lock:
            self._require(SessionState.ANSWER_PENDING)
            if not 0 <= display_index < self.current_question.option_count:
                raise ValueError(f"option {display_index} out of range")
            self._selected = display_index

    def submit_answer(self) -> AnswerRecord:
        with self._lock:
            self._require(SessionState.ANSWER_PENDING)
            if self._selected is None:
                raise InvalidTransitionError("no option selected")
            question = self.current_question
            canonical = self.deck.to_canonical(self._index, self._selected)
            is_correct = canonical == question.correct_index
            if is_correct:
                self._correct += 1
            else:
                self._incorrect += 1
            record = AnswerRecord(
                question_id=question.id,
                selected_index=canonical,
                is_correct=is_correct,
                answered_at=self.clock(),
            )
            self._answers[self._index] = record
            self._set_state(SessionState.ANSWER_REVEALED)
            self.bus.emit(
                "answer_recorded",
                {"position": self._index, "question_id": question.id, "is_correct": is_correct},
            )
            xtrace("graded", {"index": self._index, "question": question.id, "correct": is_correct})
        if self._sync is not None:
            self._sync.push_now()
        return record

    def next(self) -> Optional[AttemptResult]:
        """Advance one question; on the last question this finishes the session."""
        with self._lock:
            self._require(SessionState.ANSWER_REVEALED)
            if self._index < len(self._answers) - 1:
                self._enter_position(self._index + 1)
                return None
        return self.finish()

    def previous(self) -> None:
        with self._lock:
            if not self.is_study:
                raise InvalidTransitionError("going back is only allowed in study mode")
            self._require(*IN_PROGRESS)
            if self._index == 0:
                raise InvalidTransitionError("already at the first question")
            self._enter_position(self._index - 1)

    def _enter_position(self, index: int) -> None:
        self._index = index
        record = self._answers[index]
        if record.answered:
            self._selected = self.deck.to_display(index, record.selected_index)
            self._set_state(SessionState.ANSWER_REVEALED)
        else:
            self._selected = None
            self._set_state(SessionState.ANSWER_PENDING)

    def finish(self) -> AttemptResult:
        with self._lock:
            self._require(*IN_PROGRESS)
            local = self._conclude(SessionState.COMPLETED)
        return self._deliver(local, SessionState.COMPLETED)

    def abandon(self) -> AttemptResult:
        """End early; unanswered questions count as incorrect and the attempt fails."""
        with self._lock:
            self._require(*IN_PROGRESS)
            local = self._conclude(SessionState.ABANDONED)
        return self._deliver(local, SessionState.ABANDONED)

    def _conclude(self, terminal: SessionState) -> AttemptResult:
        self._stop_timers()
        elapsed = self.elapsed_seconds()
        self._set_state(terminal)
        test = self.ctx.test
        score = compute_score(
            self._correct,
            self._incorrect,
            len(self._answers),
            test.passing_score,
            abandoned=terminal == SessionState.ABANDONED,
        )
        local = AttemptResult(
            username=self.ctx.username,
            test_id=test.id,
            test_title=test.title,
            total_questions=score.total,
            correct_count=score.correct,
            incorrect_count=score.incorrect,
            score=score.score,
            passed=score.passed,
            attempt_number=self._attempt_number,
            time_taken_seconds=elapsed,
            completed_at=self.clock(),
            answers_detail=build_answer_details(self.deck, self._answers),
        )
        if self.is_study:
            self._result = local
        return local

    def _deliver(self, local: AttemptResult, terminal: SessionState) -> AttemptResult:
        """Submit outside the session lock, after any push still in flight."""
        if not self.is_study:
            if self._sync is not None:
                self._sync.wait_idle()
            submission = self._submitter.submit(local)
            with self._lock:
                self._submission = submission
                self._result = submission.result
        xtrace(
            "session_ended",
            {"state": terminal.value, "score": round(self._result.score, 4), "passed": self._result.passed},
        )
        self._release_scheduler()
        return self._result

    # ------------------------------------------------------------------
    # Timers
    def _start_timers(self) -> None:
        self._ticker = self.scheduler.call_every(self.tick_interval_s, self._tick)
        if not self.is_study:
            self._sync = ProgressSynchronizer(
                self.progress_store,
                self.snapshot,
                self.scheduler,
                interval_s=self.sync_interval_s,
                bus=self.bus,
            )
            self._sync.start()

    def _tick(self) -> None:
        if self.in_progress and not self._paused:
            self.bus.emit("tick", {"elapsed_s": self.elapsed_seconds()})

    def _stop_timers(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None
        if self._sync is not None:
            self._sync.stop()

    def _release_scheduler(self) -> None:
        if self._owns_scheduler:
            self.scheduler.shutdown()

    def pause(self) -> bool:
        """Stop local timers after one last push; state is left untouched.

        Returns whether that final push reached the store (always False in
        study mode, which is never persisted).
        """
        with self._lock:
            self._require(*IN_PROGRESS)
            pushed = self._sync.push_blocking() if self._sync is not None else False
            self._stop_timers()
            self._paused = True
            xtrace("session_paused", {"index": self._index, "pushed": pushed})
            return pushed

    def resume(self) -> None:
        with self._lock:
            if self._closed:
                raise InvalidTransitionError("session is closed")
            if not self._paused or not self.in_progress:
                raise InvalidTransitionError("session is not paused")
            self._paused = False
            self._start_timers()

    def close(self) -> None:
        """Tear down timers without pushing; safe to call more than once.

        A closed session accepts no further transitions.
        """
        with self._lock:
            self._closed = True
            self._stop_timers()
            self._release_scheduler()

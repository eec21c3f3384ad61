from __future__ import annotations

"""Resume Loader: rebuild a session from the last persisted snapshot.

The persisted answer list doubles as the record of presentation order, so
the original shuffle is recovered by replaying it: each record's
question id is mapped back to the canonical question. Canonical questions
missing from the list (the test changed after the session began) are
appended unanswered. Option permutations are never persisted; they are
drawn again, which is safe because only canonical indices are stored.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from ..deck.question_deck import QuestionDeck
from ..remote.base import ProgressStore, StoreError
from ..results.schema import MODE_STUDY, AnswerRecord, Mode, SessionSnapshot, TestDefinition, TestStatus
from .events import EventBus
from .explain import trace as xtrace

logger = logging.getLogger(__name__)


class ResumeConsistencyError(AssertionError):
    """Replaying a snapshot produced a state that cannot be trusted."""


@dataclass
class RestoredSession:
    deck: QuestionDeck
    answers: List[AnswerRecord]
    current_index: int
    correct_count: int
    incorrect_count: int
    started_at: datetime
    attempt_number: int
    resumed: bool
    status: Optional[TestStatus] = None


def reconstruct(
    test: TestDefinition,
    snapshot: SessionSnapshot,
    rng: Optional[random.Random] = None,
) -> RestoredSession:
    qmap = test.question_map()
    seen: Set[str] = set()
    questions = []
    answers: List[AnswerRecord] = []
    # answers to questions no longer in the test leave the counters and shift the position
    dropped_correct = dropped_incorrect = 0
    index = snapshot.current_question_index
    for pos, rec in enumerate(snapshot.answers):
        if rec.question_id in seen:
            raise ResumeConsistencyError(f"question {rec.question_id!r} appears twice in the snapshot")
        seen.add(rec.question_id)
        q = qmap.get(rec.question_id)
        if q is None:
            if rec.answered:
                if rec.is_correct:
                    dropped_correct += 1
                else:
                    dropped_incorrect += 1
            if pos < snapshot.current_question_index:
                index -= 1
            continue
        if rec.selected_index is not None and not 0 <= rec.selected_index < q.option_count:
            raise ResumeConsistencyError(f"selected index out of range for {q.id!r}")
        questions.append(q)
        answers.append(rec)
    for q in test.questions:
        if q.id not in seen:
            questions.append(q)
            answers.append(AnswerRecord(question_id=q.id))

    correct = sum(1 for a in answers if a.answered and a.is_correct)
    incorrect = sum(1 for a in answers if a.answered and not a.is_correct)
    expected = (snapshot.correct_count - dropped_correct, snapshot.incorrect_count - dropped_incorrect)
    if (correct, incorrect) != expected:
        raise ResumeConsistencyError(
            f"counters {expected[0]}/{expected[1]} do not match "
            f"replayed answers {correct}/{incorrect}"
        )
    if not 0 <= index < len(questions):
        raise ResumeConsistencyError(f"current index {index} outside 0..{len(questions) - 1}")

    deck = QuestionDeck.from_order(test, questions, rng)
    if len(deck) != len(answers):
        raise ResumeConsistencyError("answer count does not match question count")
    return RestoredSession(
        deck=deck,
        answers=answers,
        current_index=index,
        correct_count=correct,
        incorrect_count=incorrect,
        started_at=snapshot.started_at,
        attempt_number=snapshot.attempt_number,
        resumed=True,
    )


class ResumeLoader:
    def __init__(
        self,
        store: ProgressStore,
        *,
        strict: bool = False,
        bus: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.strict = strict
        self.bus = bus or EventBus()
        self.rng = rng
        self.clock = clock

    def load(self, test: TestDefinition, username: str, mode: Mode, *, fresh: bool = False) -> RestoredSession:
        if mode == MODE_STUDY:
            # study sessions are local only
            return self._fresh(test, username, mode, status=None, register=False)

        status = self._fetch_status(username, test.id)
        if fresh:
            self._clear(username, test.id)
        elif status is not None and status.is_in_progress and status.current_progress is not None:
            snapshot = status.current_progress
            if snapshot.mode != mode:
                self._fallback(f"snapshot is a {snapshot.mode} session")
            elif snapshot.answers:
                try:
                    restored = reconstruct(test, snapshot, self.rng)
                except ResumeConsistencyError as exc:
                    if self.strict:
                        raise
                    self._fallback(str(exc))
                else:
                    restored.attempt_number = status.attempts_used + 1
                    restored.status = status
                    logger.info(
                        "resuming %s/%s at question %d of %d",
                        username,
                        test.id,
                        restored.current_index + 1,
                        len(restored.deck),
                    )
                    xtrace("session_resumed", {"test": test.id, "index": restored.current_index})
                    return restored
        return self._fresh(test, username, mode, status=status, register=True)

    def _fetch_status(self, username: str, test_id: str) -> Optional[TestStatus]:
        try:
            return self.store.get_status(username, test_id)
        except StoreError as exc:
            logger.warning("could not fetch status for %s/%s: %s", username, test_id, exc)
            self._fallback("status unavailable")
            return None

    def _clear(self, username: str, test_id: str) -> None:
        try:
            self.store.clear_progress(username, test_id)
        except StoreError as exc:
            logger.warning("could not clear progress for %s/%s: %s", username, test_id, exc)

    def _fallback(self, reason: str) -> None:
        logger.warning("starting fresh session: %s", reason)
        self.bus.emit("resume_fallback", {"reason": reason})

    def _fresh(
        self,
        test: TestDefinition,
        username: str,
        mode: Mode,
        *,
        status: Optional[TestStatus],
        register: bool,
    ) -> RestoredSession:
        deck = QuestionDeck.fresh(test, self.rng)
        if register:
            try:
                self.store.start_session(username, test.id, mode, len(deck))
            except StoreError as exc:
                # local play continues without server tracking
                logger.warning("could not register session for %s/%s: %s", username, test.id, exc)
        logger.info("starting fresh %s session for %s/%s", mode, username, test.id)
        xtrace("session_fresh", {"test": test.id, "mode": mode, "questions": len(deck)})
        return RestoredSession(
            deck=deck,
            answers=[AnswerRecord(question_id=q.id) for q in deck.questions],
            current_index=0,
            correct_count=0,
            incorrect_count=0,
            started_at=self.clock(),
            attempt_number=(status.attempts_used + 1) if status is not None else 1,
            resumed=False,
            status=status,
        )

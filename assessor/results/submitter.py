from __future__ import annotations

"""Result Submitter: hands a finished Test-mode attempt to the Result Store.

The store is authoritative for attempt bookkeeping. An administrator may
reset or grant attempts while the session runs, so the locally computed
attempt number is only provisional; whatever record the store returns
replaces the local one. When the store cannot be reached the local record
is surfaced instead so the user still gets a completion screen.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..app.events import EventBus
from ..deck.question_deck import QuestionDeck
from ..remote.base import ResultStore, StoreError
from .schema import AnswerDetail, AnswerRecord, AttemptResult

logger = logging.getLogger(__name__)

HistorySink = Callable[[AttemptResult], None]


@dataclass(frozen=True)
class SubmissionOutcome:
    result: AttemptResult
    accepted: bool
    error: Optional[str] = None


def build_answer_details(deck: QuestionDeck, answers: Sequence[AnswerRecord]) -> List[AnswerDetail]:
    """One entry per question in presentation order, canonical indices only."""
    details: List[AnswerDetail] = []
    for position, record in enumerate(answers):
        q = deck[position]
        details.append(
            AnswerDetail(
                question_id=q.id,
                question=q.question,
                options=list(q.options),
                selected_index=record.selected_index if record.selected_index is not None else -1,
                correct_index=q.correct_index,
                is_correct=record.is_correct,
                explanation=q.explanation,
                category=q.category,
            )
        )
    return details


class ResultSubmitter:
    def __init__(
        self,
        store: ResultStore,
        bus: Optional[EventBus] = None,
        history_sink: Optional[HistorySink] = None,
    ) -> None:
        self.store = store
        self.bus = bus or EventBus()
        self.history_sink = history_sink

    def submit(self, local: AttemptResult) -> SubmissionOutcome:
        try:
            stored = self.store.submit_result(local)
        except StoreError as exc:
            logger.warning("result submission for %s/%s failed: %s", local.username, local.test_id, exc)
            self.bus.emit("result_submit_failed", {"error": str(exc)})
            outcome = SubmissionOutcome(local, accepted=False, error=str(exc))
        else:
            if stored is None:
                logger.warning("result store declined %s/%s", local.username, local.test_id)
                self.bus.emit("result_submit_failed", {"error": "declined"})
                outcome = SubmissionOutcome(local, accepted=False, error="declined")
            else:
                if stored.answers_detail is None:
                    stored = stored.with_updates(answers_detail=local.answers_detail)
                if stored.attempt_number != local.attempt_number:
                    logger.info(
                        "store renumbered attempt %d -> %d for %s/%s",
                        local.attempt_number,
                        stored.attempt_number,
                        local.username,
                        local.test_id,
                    )
                logger.info("result accepted for %s/%s (%s)", stored.username, stored.test_id, stored.score_percent)
                outcome = SubmissionOutcome(stored, accepted=True)
        self._record_history(outcome.result)
        return outcome

    def _record_history(self, result: AttemptResult) -> None:
        if self.history_sink is None:
            return
        try:
            self.history_sink(result)
        except Exception as exc:
            logger.warning("could not record local history: %s", exc)

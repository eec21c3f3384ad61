from __future__ import annotations

"""Scoring rules and human-readable summaries."""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from ..results.schema import AnswerDetail, AttemptResult


@dataclass(frozen=True)
class Score:
    total: int
    correct: int
    incorrect: int
    score: float
    passed: bool


def compute_score(
    correct_count: int,
    incorrect_count: int,
    total_questions: int,
    passing_score: float,
    *,
    abandoned: bool = False,
) -> Score:
    """Score a session from its final counts.

    An abandoned session reports every question without a correct answer
    as incorrect, unanswered ones included, and never passes.
    """
    score = correct_count / total_questions if total_questions > 0 else 0.0
    if abandoned:
        return Score(
            total=total_questions,
            correct=correct_count,
            incorrect=total_questions - correct_count,
            score=score,
            passed=False,
        )
    return Score(
        total=total_questions,
        correct=correct_count,
        incorrect=incorrect_count,
        score=score,
        passed=total_questions > 0 and score >= passing_score,
    )


def category_breakdown(details: Iterable[AnswerDetail]) -> Dict[str, Dict[str, int]]:
    """Asked/correct counts per question category ("general" when unset)."""
    per: Dict[str, Dict[str, int]] = {}
    for d in details:
        bucket = per.setdefault(d.category or "general", {"asked": 0, "correct": 0})
        bucket["asked"] += 1
        bucket["correct"] += 1 if d.is_correct else 0
    return per


def format_duration(seconds: int) -> str:
    minutes, secs = divmod(max(0, int(seconds)), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_summary(result: AttemptResult, passing_score: Optional[float] = None) -> str:
    verdict = "PASSED" if result.passed else "NOT PASSED"
    lines = [
        f"{result.test_title or result.test_id}: {verdict}",
        f"Score: {result.score_percent} ({result.correct_count}/{result.total_questions} correct)",
        f"Time: {format_duration(result.time_taken_seconds)}",
    ]
    if passing_score is not None:
        lines.append(f"Passing score: {passing_score * 100:.0f}%")
    if result.attempt_number > 0:
        lines.append(f"Attempt: {result.attempt_number}")
    per = category_breakdown(result.answers_detail or [])
    for cat in sorted(per):
        lines.append(f"  {cat}: {per[cat]['correct']}/{per[cat]['asked']}")
    return "\n".join(lines)

from __future__ import annotations

"""Assessment data model: questions, answers, snapshots and results.

Every record converts to and from the JSON shape used by the remote
training API (snake_case keys). Timestamps travel as ISO-8601 strings.
"""

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

Mode = Literal["study", "test"]
MODE_STUDY: Mode = "study"
MODE_TEST: Mode = "test"
MODES = {MODE_STUDY, MODE_TEST}


def _flag(value: Any) -> bool:
    # the API sends booleans as true/false or 1/0
    return value is True or value == 1


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class Question:
    id: str
    question: str
    options: List[str]
    correct_index: int
    explanation: Optional[str] = None
    category: Optional[str] = None

    def __post_init__(self) -> None:
        if len(self.options) < 2:
            raise ValueError(f"question {self.id!r} needs at least two options")
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(f"question {self.id!r} has correct_index out of range")

    @property
    def option_count(self) -> int:
        return len(self.options)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "options": list(self.options),
            "correct_index": self.correct_index,
            "explanation": self.explanation,
            "category": self.category,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            id=str(data.get("id", "")),
            question=str(data.get("question", "")),
            options=[str(o) for o in data.get("options", [])],
            correct_index=int(data.get("correct_index", 0)),
            explanation=data.get("explanation"),
            category=data.get("category"),
        )


@dataclass(frozen=True)
class TestDefinition:
    """A test and its canonical, server-ordered question list."""

    __test__ = False  # not a pytest test class

    id: str
    title: str
    questions: List[Question]
    passing_score: float = 0.8
    max_attempts: int = 3
    randomize_answers: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.passing_score <= 1.0:
            raise ValueError("passing_score must be within 0..1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        ids = [q.id for q in self.questions]
        if len(set(ids)) != len(ids):
            raise ValueError(f"test {self.id!r} has duplicate question ids")

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def questions_to_pass(self) -> int:
        return math.ceil(self.total_questions * self.passing_score)

    def question_map(self) -> Dict[str, Question]:
        return {q.id: q for q in self.questions}

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "passing_score": self.passing_score,
            "max_attempts": self.max_attempts,
            "randomize_answers": self.randomize_answers,
            "questions": [q.to_json() for q in self.questions],
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TestDefinition":
        return cls(
            id=str(data.get("id", "")),
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            questions=[Question.from_json(q) for q in data.get("questions") or []],
            passing_score=float(data.get("passing_score", 0.8)),
            max_attempts=int(data.get("max_attempts", 3)),
            randomize_answers=_flag(data.get("randomize_answers", False)),
        )


@dataclass(frozen=True)
class AnswerRecord:
    """Answer slot for one question; `selected_index` is always canonical."""

    question_id: str
    selected_index: Optional[int] = None
    is_correct: bool = False
    answered_at: Optional[datetime] = None

    @property
    def answered(self) -> bool:
        return self.selected_index is not None

    def to_json(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "selected_index": self.selected_index,
            "is_correct": self.is_correct,
            "answered_at": format_datetime(self.answered_at),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AnswerRecord":
        selected = data.get("selected_index")
        return cls(
            question_id=str(data.get("question_id", "")),
            selected_index=int(selected) if selected is not None else None,
            is_correct=_flag(data.get("is_correct", False)),
            answered_at=parse_datetime(data.get("answered_at")),
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Full serialisable state of an in-progress session.

    The order of `answers` is the presentation order of the session.
    """

    username: str
    test_id: str
    mode: Mode
    started_at: datetime
    current_question_index: int = 0
    correct_count: int = 0
    incorrect_count: int = 0
    skipped_count: int = 0
    answers: List[AnswerRecord] = field(default_factory=list)
    last_activity_at: Optional[datetime] = None
    completed: bool = False
    attempt_number: int = 1

    @property
    def total_answered(self) -> int:
        return self.correct_count + self.incorrect_count

    @property
    def total_questions(self) -> int:
        return len(self.answers)

    @property
    def accuracy(self) -> float:
        answered = self.total_answered
        return self.correct_count / answered if answered > 0 else 0.0

    def to_json(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "test_id": self.test_id,
            "mode": self.mode,
            "current_question_index": self.current_question_index,
            "correct_answers": self.correct_count,
            "incorrect_answers": self.incorrect_count,
            "skipped_answers": self.skipped_count,
            "answers": [a.to_json() for a in self.answers],
            "started_at": format_datetime(self.started_at),
            "last_activity_at": format_datetime(self.last_activity_at),
            "is_completed": self.completed,
            "attempt_number": self.attempt_number,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SessionSnapshot":
        mode = data.get("mode", MODE_TEST)
        return cls(
            username=str(data.get("username", "")),
            test_id=str(data.get("test_id", "")),
            mode=mode if mode in MODES else MODE_TEST,
            current_question_index=int(data.get("current_question_index", 0)),
            correct_count=int(data.get("correct_answers", 0)),
            incorrect_count=int(data.get("incorrect_answers", 0)),
            skipped_count=int(data.get("skipped_answers", 0)),
            answers=[AnswerRecord.from_json(a) for a in data.get("answers") or []],
            started_at=parse_datetime(data.get("started_at")) or datetime.now(timezone.utc),
            last_activity_at=parse_datetime(data.get("last_activity_at")),
            completed=_flag(data.get("is_completed", False)),
            attempt_number=int(data.get("attempt_number", 1)),
        )


@dataclass(frozen=True)
class AnswerDetail:
    """Denormalised audit copy of one question and the answer given."""

    question_id: str
    question: str
    options: List[str]
    selected_index: int
    correct_index: int
    is_correct: bool
    explanation: Optional[str] = None
    category: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "question_id": self.question_id,
            "question": self.question,
            "options": list(self.options),
            "selected_index": self.selected_index,
            "correct_index": self.correct_index,
            "is_correct": self.is_correct,
            "explanation": self.explanation,
            "category": self.category,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AnswerDetail":
        return cls(
            question_id=str(data.get("question_id", "")),
            question=str(data.get("question", "")),
            options=[str(o) for o in data.get("options", [])],
            selected_index=int(data.get("selected_index", -1)),
            correct_index=int(data.get("correct_index", 0)),
            is_correct=_flag(data.get("is_correct", False)),
            explanation=data.get("explanation"),
            category=data.get("category"),
        )


@dataclass(frozen=True)
class AttemptResult:
    username: str
    test_id: str
    test_title: str
    total_questions: int
    correct_count: int
    incorrect_count: int
    score: float
    passed: bool
    attempt_number: int
    time_taken_seconds: int
    completed_at: datetime
    answers_detail: Optional[List[AnswerDetail]] = None
    id: int = 0

    @property
    def score_percent(self) -> str:
        return f"{self.score * 100:.0f}%"

    def with_updates(self, **changes: Any) -> "AttemptResult":
        return replace(self, **changes)

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "test_id": self.test_id,
            "test_title": self.test_title,
            "total_questions": self.total_questions,
            "correct_answers": self.correct_count,
            "incorrect_answers": self.incorrect_count,
            "score": self.score,
            "passed": self.passed,
            "attempt_number": self.attempt_number,
            "time_taken_seconds": self.time_taken_seconds,
            "completed_at": format_datetime(self.completed_at),
            "answers_detail": (
                [d.to_json() for d in self.answers_detail] if self.answers_detail is not None else None
            ),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AttemptResult":
        details = data.get("answers_detail")
        return cls(
            id=int(data.get("id") or 0),
            username=str(data.get("username", "")),
            test_id=str(data.get("test_id", "")),
            test_title=str(data.get("test_title", "")),
            total_questions=int(data.get("total_questions", 0)),
            correct_count=int(data.get("correct_answers", 0)),
            incorrect_count=int(data.get("incorrect_answers", 0)),
            score=float(data.get("score") or 0.0),
            passed=_flag(data.get("passed", False)),
            attempt_number=int(data.get("attempt_number", 1)),
            time_taken_seconds=int(data.get("time_taken_seconds", 0)),
            completed_at=parse_datetime(data.get("completed_at")) or datetime.now(timezone.utc),
            answers_detail=[AnswerDetail.from_json(d) for d in details] if details is not None else None,
        )


@dataclass(frozen=True)
class TestStatus:
    """A user's standing on one test, as reported by the store."""

    __test__ = False

    test_id: str
    has_started: bool = False
    is_in_progress: bool = False
    has_passed: bool = False
    attempts_used: int = 0
    max_attempts: int = 3
    best_score: Optional[float] = None
    last_attempt_at: Optional[datetime] = None
    current_progress: Optional[SessionSnapshot] = None

    @property
    def can_retake(self) -> bool:
        return not self.has_passed and self.attempts_used < self.max_attempts

    @property
    def attempts_remaining(self) -> int:
        return self.max_attempts - self.attempts_used

    def to_json(self) -> Dict[str, Any]:
        return {
            "test_id": self.test_id,
            "has_started": self.has_started,
            "is_in_progress": self.is_in_progress,
            "has_passed": self.has_passed,
            "attempts_used": self.attempts_used,
            "max_attempts": self.max_attempts,
            "best_score": self.best_score,
            "last_attempt_at": format_datetime(self.last_attempt_at),
            "current_progress": self.current_progress.to_json() if self.current_progress else None,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TestStatus":
        progress = data.get("current_progress")
        best = data.get("best_score")
        return cls(
            test_id=str(data.get("test_id", "")),
            has_started=_flag(data.get("has_started", False)),
            is_in_progress=_flag(data.get("is_in_progress", False)),
            has_passed=_flag(data.get("has_passed", False)),
            attempts_used=int(data.get("attempts_used", 0)),
            max_attempts=int(data.get("max_attempts", 3)),
            best_score=float(best) if best is not None else None,
            last_attempt_at=parse_datetime(data.get("last_attempt_at")),
            current_progress=SessionSnapshot.from_json(progress) if progress else None,
        )

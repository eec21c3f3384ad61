from __future__ import annotations

"""Question deck: presentation order and per-question option permutations.

Option storage is never reordered. Randomised answers are an index lookup
(display index -> canonical index) kept in memory for one session only, so
correctness checks stay against the canonical `correct_index`.
"""

import random
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..results.schema import Question, TestDefinition
from ..util.randomness import make_rng


@dataclass(frozen=True)
class OptionPermutation:
    """Bijection over [0, n): `order[display] == canonical`."""

    order: Tuple[int, ...]
    _inverse: Tuple[int, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if sorted(self.order) != list(range(len(self.order))):
            raise ValueError(f"not a permutation of 0..{len(self.order) - 1}: {self.order}")
        inverse = [0] * len(self.order)
        for display, canonical in enumerate(self.order):
            inverse[canonical] = display
        object.__setattr__(self, "_inverse", tuple(inverse))

    @classmethod
    def identity(cls, n: int) -> "OptionPermutation":
        return cls(tuple(range(n)))

    @classmethod
    def shuffled(cls, n: int, rng: random.Random) -> "OptionPermutation":
        order = list(range(n))
        rng.shuffle(order)
        return cls(tuple(order))

    def __len__(self) -> int:
        return len(self.order)

    def to_canonical(self, display_index: int) -> int:
        if not 0 <= display_index < len(self.order):
            raise ValueError(f"display index {display_index} out of range")
        return self.order[display_index]

    def to_display(self, canonical_index: int) -> int:
        if not 0 <= canonical_index < len(self._inverse):
            raise ValueError(f"canonical index {canonical_index} out of range")
        return self._inverse[canonical_index]

    def apply(self, options: Sequence[str]) -> List[str]:
        return [options[c] for c in self.order]


def shuffled_questions(questions: Sequence[Question], rng: random.Random) -> List[Question]:
    order = list(questions)
    rng.shuffle(order)
    return order


class QuestionDeck:
    """Questions of one session, in presentation order.

    Use `fresh()` for a new session and `from_order()` when the order is
    replayed from persisted answer records.
    """

    def __init__(
        self,
        test: TestDefinition,
        questions: Sequence[Question],
        rng: Optional[random.Random] = None,
    ) -> None:
        self.test = test
        self._questions: List[Question] = list(questions)
        self._rng = rng or make_rng()
        if test.randomize_answers:
            self._perms = [OptionPermutation.shuffled(q.option_count, self._rng) for q in self._questions]
        else:
            self._perms = [OptionPermutation.identity(q.option_count) for q in self._questions]

    @classmethod
    def fresh(cls, test: TestDefinition, rng: Optional[random.Random] = None) -> "QuestionDeck":
        rng = rng or make_rng()
        return cls(test, shuffled_questions(test.questions, rng), rng)

    @classmethod
    def from_order(
        cls, test: TestDefinition, questions: Sequence[Question], rng: Optional[random.Random] = None
    ) -> "QuestionDeck":
        return cls(test, questions, rng)

    def __len__(self) -> int:
        return len(self._questions)

    def __getitem__(self, position: int) -> Question:
        return self._questions[position]

    @property
    def questions(self) -> List[Question]:
        return list(self._questions)

    def permutation(self, position: int) -> OptionPermutation:
        return self._perms[position]

    def to_canonical(self, position: int, display_index: int) -> int:
        return self._perms[position].to_canonical(display_index)

    def to_display(self, position: int, canonical_index: int) -> int:
        return self._perms[position].to_display(canonical_index)

    def display_options(self, position: int) -> List[str]:
        return self._perms[position].apply(self._questions[position].options)

    def is_correct(self, position: int, canonical_index: int) -> bool:
        return canonical_index == self._questions[position].correct_index

import unittest
from datetime import datetime, timezone

from assessor.results.schema import AnswerDetail, AttemptResult
from assessor.stats.stats import category_breakdown, compute_score, format_duration, format_summary


class ScoreTests(unittest.TestCase):
    def test_pass_at_threshold(self) -> None:
        s = compute_score(3, 1, 4, 0.75)
        self.assertAlmostEqual(s.score, 0.75)
        self.assertTrue(s.passed)

    def test_below_threshold_fails(self) -> None:
        self.assertFalse(compute_score(2, 2, 4, 0.75).passed)

    def test_abandoned_reclassifies_unanswered(self) -> None:
        s = compute_score(2, 0, 4, 0.5, abandoned=True)
        self.assertEqual(s.incorrect, 2)
        self.assertAlmostEqual(s.score, 0.5)
        self.assertFalse(s.passed)

    def test_empty_test_scores_zero(self) -> None:
        s = compute_score(0, 0, 0, 0.0)
        self.assertEqual(s.score, 0.0)
        self.assertFalse(s.passed)


class SummaryTests(unittest.TestCase):
    def _detail(self, category, correct):
        return AnswerDetail(
            question_id="x",
            question="?",
            options=["a", "b"],
            selected_index=0,
            correct_index=0 if correct else 1,
            is_correct=correct,
            category=category,
        )

    def test_category_breakdown(self) -> None:
        per = category_breakdown([self._detail("fire", True), self._detail("fire", False), self._detail(None, True)])
        self.assertEqual(per, {"fire": {"asked": 2, "correct": 1}, "general": {"asked": 1, "correct": 1}})

    def test_format_duration(self) -> None:
        self.assertEqual(format_duration(75), "01:15")
        self.assertEqual(format_duration(3725), "1:02:05")

    def test_format_summary(self) -> None:
        result = AttemptResult(
            username="alice",
            test_id="t1",
            test_title="Safety",
            total_questions=4,
            correct_count=3,
            incorrect_count=1,
            score=0.75,
            passed=True,
            attempt_number=2,
            time_taken_seconds=90,
            completed_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            answers_detail=[self._detail("fire", True)],
        )
        text = format_summary(result, 0.75)
        self.assertIn("Safety: PASSED", text)
        self.assertIn("Score: 75% (3/4 correct)", text)
        self.assertIn("Attempt: 2", text)
        self.assertIn("fire: 1/1", text)


if __name__ == "__main__":
    unittest.main()

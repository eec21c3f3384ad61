import random
import threading
import unittest

from assessor.app.session_manager import InvalidTransitionError, SessionManager, SessionState
from assessor.remote.memory import InMemoryTrainingStore
from assessor.results.schema import TestDefinition

from .support import Harness, HoldingStore, make_test


class FinishAndAbandonTests(unittest.TestCase):
    def test_three_of_four_passes_at_three_quarters(self) -> None:
        h = Harness(make_test(4, passing_score=0.75))
        h.sm.start()
        for correct in (True, True, False, True):
            h.answer(correct)
            h.sm.next()

        result = h.sm.result
        self.assertEqual(h.sm.state, SessionState.COMPLETED)
        self.assertAlmostEqual(result.score, 0.75)
        self.assertTrue(result.passed)
        self.assertEqual(result.correct_count, 3)
        self.assertEqual(result.incorrect_count, 1)
        self.assertTrue(h.sm.submission.accepted)
        self.assertEqual(h.store.call_count("submit_result"), 1)

    def test_abandon_counts_unanswered_as_incorrect(self) -> None:
        h = Harness(make_test(4, passing_score=0.75))
        h.sm.start()
        h.answer(True)
        h.sm.next()
        h.answer(True)

        result = h.sm.abandon()
        self.assertEqual(h.sm.state, SessionState.ABANDONED)
        self.assertEqual(result.correct_count, 2)
        self.assertEqual(result.incorrect_count, 2)
        self.assertFalse(result.passed)
        self.assertAlmostEqual(result.score, 0.5)
        # abandoned attempts are still submitted
        self.assertEqual(h.store.call_count("submit_result"), 1)

    def test_abandon_never_passes(self) -> None:
        h = Harness(make_test(4, passing_score=0.5))
        h.sm.start()
        for i in range(4):
            h.answer(True)
            if i < 3:
                h.sm.next()
        result = h.sm.abandon()
        self.assertAlmostEqual(result.score, 1.0)
        self.assertFalse(result.passed)

    def test_finish_early_leaves_unanswered_uncounted(self) -> None:
        h = Harness(make_test(4, passing_score=0.75))
        h.sm.start()
        h.answer(True)
        result = h.sm.finish()
        self.assertEqual(result.correct_count, 1)
        self.assertEqual(result.incorrect_count, 0)
        self.assertAlmostEqual(result.score, 0.25)
        self.assertFalse(result.passed)

    def test_time_taken_is_wall_clock_since_start(self) -> None:
        h = Harness()
        h.sm.start()
        h.advance(42)
        result = h.sm.finish()
        self.assertEqual(result.time_taken_seconds, 42)

    def test_answer_details_follow_presentation_order(self) -> None:
        h = Harness(make_test(5))
        h.sm.start()
        order = [q.id for q in h.sm.deck.questions]
        h.answer(False)
        result = h.sm.abandon()
        self.assertEqual([d.question_id for d in result.answers_detail], order)
        self.assertEqual(result.answers_detail[1].selected_index, -1)


class TransitionTests(unittest.TestCase):
    def test_start_enters_answer_pending(self) -> None:
        h = Harness()
        self.assertEqual(h.sm.state, SessionState.NOT_STARTED)
        h.sm.start()
        self.assertEqual(h.sm.state, SessionState.ANSWER_PENDING)
        self.assertEqual(h.sm.current_index, 0)
        self.assertFalse(h.sm.resumed)

    def test_empty_test_is_rejected(self) -> None:
        h = Harness(TestDefinition(id="empty", title="Empty", questions=[]))
        with self.assertRaises(ValueError):
            h.sm.start()

    def test_calls_outside_their_state_raise(self) -> None:
        h = Harness()
        with self.assertRaises(InvalidTransitionError):
            h.sm.select_option(0)
        h.sm.start()
        with self.assertRaises(InvalidTransitionError):
            h.sm.next()
        with self.assertRaises(InvalidTransitionError):
            h.sm.submit_answer()  # nothing selected
        with self.assertRaises(InvalidTransitionError):
            h.sm.previous()  # test mode
        with self.assertRaises(InvalidTransitionError):
            h.sm.start()

    def test_select_option_out_of_range(self) -> None:
        h = Harness()
        h.sm.start()
        with self.assertRaises(ValueError):
            h.sm.select_option(4)
        with self.assertRaises(ValueError):
            h.sm.select_option(-1)

    def test_select_is_only_allowed_before_submitting(self) -> None:
        h = Harness()
        h.sm.start()
        h.answer(True)
        self.assertEqual(h.sm.state, SessionState.ANSWER_REVEALED)
        with self.assertRaises(InvalidTransitionError):
            h.sm.select_option(0)

    def test_no_mutation_after_terminal_state(self) -> None:
        h = Harness()
        h.sm.start()
        h.sm.finish()
        for call in (lambda: h.sm.select_option(0), h.sm.finish, h.sm.abandon, h.sm.pause):
            with self.assertRaises(InvalidTransitionError):
                call()
        self.assertTrue(h.sm.snapshot().completed)

    def test_canonical_selected_with_shuffled_options(self) -> None:
        h = Harness(make_test(6, randomize_answers=True, options=5))
        h.sm.start()
        for pos in range(6):
            q = h.sm.current_question
            target = (q.correct_index + pos) % q.option_count
            h.sm.select_option(h.sm.deck.to_display(pos, target))
            record = h.sm.submit_answer()
            self.assertEqual(h.sm.canonical_selected(), target)
            self.assertEqual(record.selected_index, target)
            self.assertEqual(record.is_correct, target == q.correct_index)
            if pos < 5:
                h.sm.next()

    def test_counts_follow_answers(self) -> None:
        h = Harness()
        h.sm.start()
        h.answer(False)
        h.sm.next()
        h.answer(True)
        self.assertEqual((h.sm.correct_count, h.sm.incorrect_count), (1, 1))
        self.assertEqual(len(h.events["answer_recorded"]), 2)

    def test_next_on_last_question_finishes(self) -> None:
        h = Harness(make_test(2))
        h.sm.start()
        h.answer(True)
        self.assertIsNone(h.sm.next())
        h.answer(True)
        result = h.sm.next()
        self.assertIsNotNone(result)
        self.assertEqual(h.sm.state, SessionState.COMPLETED)


class StudyModeTests(unittest.TestCase):
    def test_study_never_touches_the_stores(self) -> None:
        h = Harness(mode="study")
        h.sm.start()
        for i in range(4):
            h.answer(i % 2 == 0)
            h.sm.next()
        self.assertEqual(h.sm.state, SessionState.COMPLETED)
        self.assertEqual(h.store.calls, [])
        self.assertIsNone(h.sm.submission)
        self.assertEqual(h.sm.result.attempt_number, 0)
        self.assertEqual(h.store.get_status("alice", "t1").attempts_used, 0)

    def test_previous_restores_answer_without_recounting(self) -> None:
        h = Harness(make_test(3, randomize_answers=True), mode="study")
        h.sm.start()
        h.answer(True)
        chosen = h.sm.selected_display_index
        h.sm.next()
        self.assertEqual(h.sm.state, SessionState.ANSWER_PENDING)

        h.sm.previous()
        self.assertEqual(h.sm.current_index, 0)
        self.assertEqual(h.sm.state, SessionState.ANSWER_REVEALED)
        self.assertEqual(h.sm.selected_display_index, chosen)
        self.assertEqual((h.sm.correct_count, h.sm.incorrect_count), (1, 0))

        h.sm.next()
        self.assertEqual(h.sm.state, SessionState.ANSWER_PENDING)
        self.assertIsNone(h.sm.selected_display_index)

    def test_previous_at_first_question(self) -> None:
        h = Harness(mode="study")
        h.sm.start()
        with self.assertRaises(InvalidTransitionError):
            h.sm.previous()

    def test_study_abandon_is_local(self) -> None:
        h = Harness(mode="study")
        h.sm.start()
        h.answer(True)
        result = h.sm.abandon()
        self.assertFalse(result.passed)
        self.assertEqual(h.store.call_count("submit_result"), 0)


class SynchronisationTests(unittest.TestCase):
    def test_answer_triggers_immediate_push(self) -> None:
        h = Harness()
        h.sm.start()
        h.answer(True)
        self.assertEqual(h.scheduler.pending, 1)
        h.scheduler.run_pending()
        stored = h.store.get_progress("alice", "t1")
        self.assertEqual(stored.correct_count, 1)
        self.assertTrue(stored.answers[0].answered)

    def test_periodic_push_every_five_seconds(self) -> None:
        h = Harness()
        h.sm.start()
        h.advance(4)
        self.assertEqual(h.store.call_count("update_progress"), 0)
        h.advance(1)
        self.assertEqual(h.store.call_count("update_progress"), 1)
        h.advance(10)
        self.assertEqual(h.store.call_count("update_progress"), 3)

    def test_ticker_emits_elapsed_seconds(self) -> None:
        h = Harness()
        h.sm.start()
        h.advance(3)
        self.assertEqual([t["elapsed_s"] for t in h.events["tick"]][-1], 3)
        self.assertEqual(len(h.events["tick"]), 3)

    def test_nothing_fires_after_finish(self) -> None:
        h = Harness()
        h.sm.start()
        h.answer(True)
        h.sm.finish()
        pushes = h.store.call_count("update_progress")
        ticks = len(h.events["tick"])
        self.assertEqual(h.scheduler.active_timers, 0)
        self.assertEqual(h.scheduler.run_pending(), 0)
        h.advance(60)
        self.assertEqual(h.store.call_count("update_progress"), pushes)
        self.assertEqual(len(h.events["tick"]), ticks)
        self.assertTrue(h.sm.synchronizer.stopped)

    def test_push_failures_do_not_interrupt_the_session(self) -> None:
        h = Harness()
        h.store.fail("update_progress")
        h.sm.start()
        h.answer(True)
        h.scheduler.run_pending()
        h.advance(5)
        self.assertEqual(len(h.events["sync_failed"]), 2)
        self.assertEqual(h.sm.state, SessionState.ANSWER_REVEALED)

        h.store.recover()
        h.advance(5)
        self.assertEqual(h.store.get_progress("alice", "t1").correct_count, 1)

    def test_registration_failure_still_allows_play(self) -> None:
        h = Harness()
        h.store.fail("start_session", "get_status")
        h.sm.start()
        h.answer(True)
        self.assertEqual(h.sm.state, SessionState.ANSWER_REVEALED)
        self.assertEqual(len(h.events["resume_fallback"]), 1)

    def test_pause_pushes_once_and_stops_timers(self) -> None:
        h = Harness()
        h.sm.start()
        h.answer(True)
        self.assertTrue(h.sm.pause())
        self.assertTrue(h.sm.paused)
        self.assertEqual(h.sm.state, SessionState.ANSWER_REVEALED)
        self.assertEqual(h.scheduler.active_timers, 0)
        self.assertEqual(h.store.get_progress("alice", "t1").correct_count, 1)
        with self.assertRaises(InvalidTransitionError):
            h.sm.next()

        h.sm.resume()
        self.assertGreater(h.scheduler.active_timers, 0)
        h.sm.next()
        self.assertEqual(h.sm.current_index, 1)

    def test_close_stops_without_pushing(self) -> None:
        h = Harness()
        h.sm.start()
        before = h.store.call_count("update_progress")
        h.sm.close()
        h.advance(30)
        self.assertEqual(h.store.call_count("update_progress"), before)

    def test_closed_session_rejects_transitions(self) -> None:
        h = Harness()
        h.sm.start()
        before = h.store.call_count("update_progress")
        h.sm.close()
        self.assertTrue(h.sm.closed)
        for call in (lambda: h.sm.select_option(0), h.sm.submit_answer, h.sm.finish, h.sm.abandon, h.sm.pause):
            with self.assertRaises(InvalidTransitionError):
                call()
        self.assertEqual(h.sm.state, SessionState.ANSWER_PENDING)
        self.assertEqual(h.store.call_count("update_progress"), before)
        h.sm.close()

    def test_paused_session_cannot_resume_after_close(self) -> None:
        h = Harness()
        h.sm.start()
        h.answer(True)
        h.sm.pause()
        h.sm.close()
        with self.assertRaises(InvalidTransitionError):
            h.sm.resume()
        self.assertEqual(h.scheduler.active_timers, 0)

    def test_closed_session_with_thread_scheduler_stays_total(self) -> None:
        test = make_test()
        store = InMemoryTrainingStore(tests=[test])
        sm = SessionManager(test, "alice", "test", progress_store=store, result_store=store, rng=random.Random(3))
        sm.start()
        sm.close()
        with self.assertRaises(InvalidTransitionError):
            sm.select_option(0)
        with self.assertRaises(InvalidTransitionError):
            sm.pause()
        with self.assertRaises(InvalidTransitionError):
            sm.resume()

    def test_finish_submits_after_push_in_flight_without_holding_the_session(self) -> None:
        test = make_test()
        h = Harness(test, store=HoldingStore(tests=[test]))
        h.sm.start()
        for _ in range(3):
            h.answer(True)
            h.sm.next()
        h.scheduler.run_pending()
        h.store.hold = True
        h.answer(True)
        sender = threading.Thread(target=h.scheduler.run_pending, daemon=True)
        sender.start()
        self.assertTrue(h.store.entered.wait(5))

        finisher = threading.Thread(target=h.sm.finish, daemon=True)
        finisher.start()
        finisher.join(0.2)
        self.assertTrue(finisher.is_alive())
        self.assertEqual(h.store.call_count("submit_result"), 0)

        reader = threading.Thread(target=h.sm.snapshot, daemon=True)
        reader.start()
        reader.join(1)
        self.assertFalse(reader.is_alive())

        h.store.release.set()
        sender.join(5)
        finisher.join(5)
        self.assertFalse(finisher.is_alive())
        self.assertEqual(h.sm.state, SessionState.COMPLETED)
        self.assertTrue(h.sm.result.passed)
        last_push = len(h.store.calls) - 1 - h.store.calls[::-1].index("update_progress")
        self.assertGreater(h.store.calls.index("submit_result"), last_push)


class SubmissionTests(unittest.TestCase):
    def test_failed_submission_surfaces_local_result(self) -> None:
        h = Harness(make_test(4, passing_score=0.75))
        h.store.fail("submit_result")
        h.sm.start()
        for correct in (True, True, True, False):
            h.answer(correct)
            h.sm.next()
        result = h.sm.result
        self.assertTrue(result.passed)
        self.assertFalse(h.sm.submission.accepted)
        self.assertEqual(len(h.events["result_submit_failed"]), 1)

    def test_store_assigns_attempt_number_after_admin_reset(self) -> None:
        test = make_test(2)
        h = Harness(test)
        h.sm.start()
        h.sm.abandon()  # attempt 1 used

        h2 = Harness(test, store=h.store)
        h2.sm.start()
        self.assertEqual(h2.sm.attempt_number, 2)
        h.store.reset_attempts("alice", "t1", "admin")
        result = h2.sm.finish()
        self.assertEqual(result.attempt_number, 1)
        self.assertTrue(h2.sm.submission.accepted)

    def test_max_attempts_declined_by_store(self) -> None:
        test = make_test(1, max_attempts=1)
        first = Harness(test)
        first.sm.start()
        first.sm.abandon()

        second = Harness(test, store=first.store)
        second.sm.start()
        second.answer(True)
        result = second.sm.next()
        self.assertFalse(second.sm.submission.accepted)
        self.assertEqual(second.sm.submission.error, "declined")
        self.assertTrue(result.passed)
        self.assertEqual(first.store.get_status("alice", "t1").attempts_used, 1)

    def test_history_sink_receives_final_result(self) -> None:
        seen = []
        h = Harness(history_sink=seen.append)
        h.sm.start()
        h.sm.abandon()
        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0].attempt_number, 1)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

"""CLI for the assessor: take tests, check status, inspect local history."""

import argparse
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from ..config.config import load_config, load_test_definition, validate_config
from ..remote.base import StoreError, TrainingStore
from ..remote.http_store import HttpTrainingStore
from ..remote.memory import InMemoryTrainingStore
from ..results.schema import TestDefinition
from ..stats.stats import format_duration, format_summary
from ..util.randomness import make_rng, seed_from_env

from .events import EventBus
from .session_manager import InvalidTransitionError, SessionManager, SessionState

Ask = Callable[[str], str]

HELP_LINE = "[1-9] answer  [n] next  [p] previous  [f] finish  [q] abandon  [x] pause and exit"


def _make_store(cfg: dict[str, Any], test: Optional[TestDefinition]) -> TrainingStore:
    if cfg["api"].get("base_url"):
        return HttpTrainingStore.from_config(cfg)
    return InMemoryTrainingStore(tests=[test] if test is not None else ())


def _fetch_test(args: argparse.Namespace, store: TrainingStore) -> Optional[TestDefinition]:
    try:
        return store.get_test(args.test_id)
    except StoreError as e:
        print(f"ERROR: Could not load test '{args.test_id}': {e}")
        return None


def _print_question(sm: SessionManager) -> None:
    q = sm.current_question
    print(f"\nQuestion {sm.current_index + 1}/{sm.total_questions}  [{format_duration(sm.elapsed_seconds())}]")
    print(q.question)
    for i, opt in enumerate(sm.display_options):
        marker = "*" if sm.selected_display_index == i else " "
        print(f" {marker}{i + 1}. {opt}")


def _print_feedback(sm: SessionManager) -> None:
    record = sm.answers[sm.current_index]
    q = sm.current_question
    if record.is_correct:
        print("Correct.")
    else:
        right = sm.deck.to_display(sm.current_index, q.correct_index)
        print(f"Incorrect. Answer: {right + 1}. {sm.display_options[right]}")
    if q.explanation:
        print(q.explanation)


def run_interactive(sm: SessionManager, ask: Ask = input) -> Optional[str]:
    """Drive a started session from the terminal until it ends or is paused.

    Returns "paused" when the user left with `x`, otherwise None.
    """
    print(HELP_LINE)
    shown = -1
    while sm.in_progress:
        if shown != sm.current_index:
            _print_question(sm)
            if sm.state == SessionState.ANSWER_REVEALED:
                _print_feedback(sm)
            shown = sm.current_index
        cmd = ask("> ").strip().lower()
        try:
            if cmd.isdigit():
                sm.select_option(int(cmd) - 1)
                sm.submit_answer()
                _print_feedback(sm)
            elif cmd in ("n", ""):
                if sm.state == SessionState.ANSWER_REVEALED:
                    sm.next()
            elif cmd == "p":
                sm.previous()
            elif cmd == "f":
                sm.finish()
            elif cmd == "q":
                sm.abandon()
            elif cmd == "x":
                pushed = sm.pause()
                if not sm.is_study:
                    print("Progress saved." if pushed else "Progress could not be saved; resuming may lose the last answers.")
                return "paused"
            else:
                print(HELP_LINE)
        except (ValueError, InvalidTransitionError) as e:
            print(f"[WARN] {e}")
    return None


def _cmd_run(args: argparse.Namespace, cfg: dict[str, Any], ask: Ask) -> int:
    if args.explain or cfg["explain"]:
        from .explain import enable as explain_enable
        explain_enable(True)
    mode = args.mode or cfg["session"]["default_mode"]
    test = load_test_definition(args.deck) if args.deck else None
    store = _make_store(cfg, test)
    if test is None:
        test = _fetch_test(args, store)
    if test is None:
        print(f"ERROR: Test '{args.test_id}' not found.")
        return 1

    if mode == "test" and not args.fresh:
        try:
            status = store.get_status(args.user, test.id)
        except StoreError:
            status = None  # the resume step reports it
        if status is not None and not status.is_in_progress and not status.can_retake:
            reason = "already passed" if status.has_passed else "no attempts left"
            print(f"Cannot start '{test.title}': {reason}.")
            return 1

    history = None
    if mode == "test" and cfg["history"]["enabled"]:
        from storage import history_sink
        history = history_sink(Path(cfg["history"]["data_dir"]))

    bus = EventBus()
    bus.subscribe("sync_failed", lambda p: print(f"[WARN] Progress not saved: {p.get('error')}"))
    bus.subscribe("resume_fallback", lambda p: print(f"[INFO] Starting fresh: {p.get('reason')}"))
    bus.subscribe("result_submit_failed", lambda p: print(f"[WARN] Result kept locally only: {p.get('error')}"))

    session = cfg["session"]
    sm = SessionManager(
        test,
        args.user,
        mode,
        progress_store=store,
        result_store=store,
        bus=bus,
        rng=make_rng(seed_from_env()),
        sync_interval_s=float(session["sync_interval_s"]),
        tick_interval_s=float(session["tick_interval_s"]),
        strict=session["strict"],
        history_sink=history,
    )
    sm.start(fresh=args.fresh)
    if sm.resumed:
        print(f"Resuming at question {sm.current_index + 1} of {sm.total_questions}.")
    print(f"{test.title} ({mode} mode): {test.total_questions} questions, "
          f"{test.questions_to_pass} correct needed to pass.")
    try:
        outcome = run_interactive(sm, ask)
    finally:
        sm.close()
        if isinstance(store, HttpTrainingStore):
            store.close()
    if outcome == "paused" or sm.result is None:
        return 0

    print("\nSession Summary:")
    print(format_summary(sm.result, test.passing_score))
    if sm.state == SessionState.ABANDONED:
        print("Session abandoned.")
    return 0


def _cmd_status(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    if not cfg["api"].get("base_url"):
        print("ERROR: api.base_url is not configured.")
        return 1
    with HttpTrainingStore.from_config(cfg) as store:
        try:
            status = store.get_status(args.user, args.test_id)
        except StoreError as e:
            print(f"ERROR: {e}")
            return 1
    if status is None:
        print(f"No status for {args.user}/{args.test_id}.")
        return 1
    print(f"Test: {status.test_id}")
    print(f"Started: {'yes' if status.has_started else 'no'}")
    print(f"In progress: {'yes' if status.is_in_progress else 'no'}")
    print(f"Passed: {'yes' if status.has_passed else 'no'}")
    print(f"Attempts: {status.attempts_used}/{status.max_attempts} (remaining {status.attempts_remaining})")
    if status.best_score is not None:
        print(f"Best score: {status.best_score * 100:.0f}%")
    if status.current_progress is not None:
        snap = status.current_progress
        print(f"Current: question {snap.current_question_index + 1}, "
              f"{snap.correct_count} correct / {snap.incorrect_count} incorrect")
    print(f"Can retake: {'yes' if status.can_retake else 'no'}")
    return 0


def _cmd_history(args: argparse.Namespace, cfg: dict[str, Any]) -> int:
    from storage import category_breakdown, export_ndjson, load_all, query_trend

    data_dir = Path(args.data_dir or cfg["history"]["data_dir"])
    df = load_all(data_dir)
    if args.test_id:
        df = query_trend(df, test_id=args.test_id)
    if df.empty:
        print("No recorded attempts.")
        return 0
    per = category_breakdown(df)
    print(f"{'category':<20}{'attempts':>9}{'asked':>7}{'correct':>9}{'acc':>7}")
    for row in per.itertuples(index=False):
        print(f"{row.category:<20}{row.attempts:>9}{row.Q:>7}{row.C:>9}{row.acc * 100:>6.0f}%")
    if args.export:
        export_ndjson(df, Path(args.export))
        print(f"Exported {len(df)} rows to {args.export}")
    return 0


def main(argv: list[str] | None = None, *, ask: Ask = input) -> int:
    p = argparse.ArgumentParser(prog="assessor")
    p.add_argument("-v", "--verbose", action="store_true")
    sub = p.add_subparsers(dest="cmd", required=True)

    rp = sub.add_parser("run")
    rp.add_argument("--config", default=None)
    src = rp.add_mutually_exclusive_group(required=True)
    src.add_argument("--deck", default=None, help="YAML test deck")
    src.add_argument("--test-id", dest="test_id", default=None, help="Load the test from the API")
    rp.add_argument("--user", required=True)
    rp.add_argument("--mode", choices=["study", "test"], default=None)
    rp.add_argument("--fresh", action="store_true", help="Discard saved progress and start over")
    rp.add_argument("--explain", action="store_true")

    sp = sub.add_parser("status")
    sp.add_argument("--config", default=None)
    sp.add_argument("--user", required=True)
    sp.add_argument("--test-id", dest="test_id", required=True)

    hp = sub.add_parser("history")
    hp.add_argument("--config", default=None)
    hp.add_argument("--data-dir", dest="data_dir", default=None)
    hp.add_argument("--test-id", dest="test_id", default=None)
    hp.add_argument("--export", default=None, help="Write the rows as NDJSON")

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    cfg = validate_config(load_config(args.config))

    if args.cmd == "run":
        return _cmd_run(args, cfg, ask)
    if args.cmd == "status":
        return _cmd_status(args, cfg)
    if args.cmd == "history":
        return _cmd_history(args, cfg)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())

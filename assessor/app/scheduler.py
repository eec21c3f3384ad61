from __future__ import annotations

"""Cancellable scheduled tasks.

Timers are owned by whoever created them and must be cancelled
explicitly. `ThreadScheduler` backs them with daemon threads;
`ManualScheduler` runs nothing until the caller advances its clock.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Deque, List, Optional, Protocol

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class TaskHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def call_every(self, interval_s: float, fn: Task) -> TaskHandle: ...

    def submit(self, fn: Task) -> TaskHandle: ...

    def shutdown(self) -> None: ...


class _RepeatingTimer:
    def __init__(self, interval_s: float, fn: Task) -> None:
        self.interval_s = interval_s
        self.fn = fn
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def arm(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._timer = threading.Timer(self.interval_s, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        if self._cancelled:
            return
        try:
            self.fn()
        except Exception:
            logger.exception("periodic task failed")
        self.arm()

    def cancel(self) -> None:
        with self._lock:
            self._cancelled = True
            if self._timer:
                self._timer.cancel()
                self._timer = None


class _FutureHandle:
    def __init__(self, future: Future) -> None:
        self._future = future
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        self._future.cancel()


class ThreadScheduler:
    def __init__(self, max_workers: int = 2) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="assessor")
        self._timers: List[_RepeatingTimer] = []

    def call_every(self, interval_s: float, fn: Task) -> TaskHandle:
        timer = _RepeatingTimer(interval_s, fn)
        self._timers = [t for t in self._timers if not t.cancelled]
        self._timers.append(timer)
        timer.arm()
        return timer

    def submit(self, fn: Task) -> TaskHandle:
        def run() -> None:
            try:
                fn()
            except Exception:
                logger.exception("background task failed")

        return _FutureHandle(self._pool.submit(run))

    def shutdown(self) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        self._pool.shutdown(wait=False)


class _ManualTask:
    def __init__(self, fn: Task, interval_s: float = 0.0, due: float = 0.0) -> None:
        self.fn = fn
        self.interval_s = interval_s
        self.due = due
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualScheduler:
    """Deterministic scheduler: time moves only through `advance()`."""

    def __init__(self) -> None:
        self.now = 0.0
        self._periodic: List[_ManualTask] = []
        self._pending: Deque[_ManualTask] = deque()

    def call_every(self, interval_s: float, fn: Task) -> TaskHandle:
        task = _ManualTask(fn, interval_s, self.now + interval_s)
        self._periodic.append(task)
        return task

    def submit(self, fn: Task) -> TaskHandle:
        task = _ManualTask(fn)
        self._pending.append(task)
        return task

    @property
    def pending(self) -> int:
        return sum(1 for t in self._pending if not t.cancelled)

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._periodic if not t.cancelled)

    def run_pending(self) -> int:
        ran = 0
        while self._pending:
            task = self._pending.popleft()
            if task.cancelled:
                continue
            task.fn()
            ran += 1
        return ran

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due periodic tasks in time order."""
        target = self.now + seconds
        while True:
            live = [t for t in self._periodic if not t.cancelled and t.due <= target]
            if not live:
                break
            task = min(live, key=lambda t: t.due)
            self.now = task.due
            task.due += task.interval_s
            task.fn()
        self._periodic = [t for t in self._periodic if not t.cancelled]
        self.now = target

    def shutdown(self) -> None:
        for task in self._periodic:
            task.cancel()
        for task in self._pending:
            task.cancel()

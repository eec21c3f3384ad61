from __future__ import annotations

"""Progress Synchronizer: pushes session snapshots to the Progress Store.

Two triggers: a periodic timer and an immediate push after every answer.
Each push carries the full snapshot, so the store can treat it as a
last-write-wins upsert. Failures are logged and dropped; the next tick
sends fresh data. Once stopped, nothing is sent again.
"""

import logging
import threading
from typing import Callable, List, Optional

from ..remote.base import ProgressStore, StoreError
from ..results.schema import SessionSnapshot
from .events import EventBus
from .scheduler import Scheduler, TaskHandle

logger = logging.getLogger(__name__)

SnapshotFn = Callable[[], SessionSnapshot]


class ProgressSynchronizer:
    def __init__(
        self,
        store: ProgressStore,
        snapshot_fn: SnapshotFn,
        scheduler: Scheduler,
        *,
        interval_s: float = 5.0,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.store = store
        self.snapshot_fn = snapshot_fn
        self.scheduler = scheduler
        self.interval_s = interval_s
        self.bus = bus or EventBus()
        self.pushes = 0
        self.failures = 0
        self._periodic: Optional[TaskHandle] = None
        self._jobs: List[TaskHandle] = []
        self._stopped = False
        self._send_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._periodic is not None and not self._stopped

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> None:
        if self._stopped or self._periodic is not None:
            return
        self._periodic = self.scheduler.call_every(self.interval_s, self._tick)

    def push_now(self) -> None:
        """Queue a non-blocking push of the snapshot as it is right now."""
        if self._stopped:
            return
        snapshot = self.snapshot_fn()
        self._jobs = [j for j in self._jobs if not j.cancelled]
        self._jobs.append(self.scheduler.submit(lambda: self._send(snapshot)))

    def push_blocking(self) -> bool:
        """Send the current snapshot on the calling thread."""
        if self._stopped:
            return False
        return self._send(self.snapshot_fn())

    def _tick(self) -> None:
        if self._stopped:
            return
        self._send(self.snapshot_fn())

    def _send(self, snapshot: SessionSnapshot) -> bool:
        with self._send_lock:
            if self._stopped:
                return False
            try:
                ok = self.store.update_progress(snapshot)
            except StoreError as exc:
                self._failed(str(exc))
                return False
            if not ok:
                self._failed("declined by progress store")
                return False
            self.pushes += 1
            logger.debug(
                "pushed progress %s/%s at question %d",
                snapshot.username,
                snapshot.test_id,
                snapshot.current_question_index,
            )
            return True

    def _failed(self, error: str) -> None:
        self.failures += 1
        logger.warning("progress sync failed: %s", error)
        self.bus.emit("sync_failed", {"error": error})

    def stop(self) -> None:
        """Cancel every timer and queued push without waiting on the store.

        A push already in flight finishes on its own thread.
        """
        self._stopped = True
        if self._periodic is not None:
            self._periodic.cancel()
        for job in self._jobs:
            job.cancel()
        self._jobs.clear()

    def wait_idle(self) -> None:
        """Block until a push in flight, if any, has returned."""
        with self._send_lock:
            pass

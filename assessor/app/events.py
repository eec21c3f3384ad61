from __future__ import annotations

"""Tiny pub/sub bus for session notices.

Events emitted by the engine:
- "state_changed"        {"state": str, "index": int}
- "tick"                 {"elapsed_s": int}
- "answer_recorded"      {"position": int, "question_id": str, "is_correct": bool}
- "sync_failed"          {"error": str}
- "resume_fallback"      {"reason": str}
- "result_submit_failed" {"error": str}
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, List[Handler]] = {}

    def subscribe(self, event: str, handler: Handler) -> None:
        self._subs.setdefault(event, []).append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._subs.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event: str, payload: Dict[str, Any] | None = None) -> None:
        for h in list(self._subs.get(event, [])):
            try:
                h(dict(payload or {}))
            except Exception:
                # a broken listener must not break the session
                logger.exception("handler for %r failed", event)

"""Async event bus used to fan completion and limit events out to subscribers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]

COMPLETION_RECORDED = "completion.recorded"
LIMITS_EVALUATED = "limits.evaluated"
SUBMISSION_FAILED = "submission.failed"


class EventBus:
    """Simple asyncio-based pub/sub event bus.

    Handlers registered for ``"*"`` receive every event.  Each handler runs
    in its own task; a failing handler is logged and never affects the
    emitter or the other handlers.
    """

    MAX_HISTORY = 1000

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._history: deque[dict[str, Any]] = deque(maxlen=self.MAX_HISTORY)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if event_type in self._handlers:
            self._handlers[event_type] = [
                h for h in self._handlers[event_type] if h is not handler
            ]

    async def emit(self, event_type: str, data: dict[str, Any]) -> None:
        event = {"type": event_type, **data}
        self._history.append(event)

        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._handlers.get("*", []))

        for handler in handlers:
            task = asyncio.create_task(self._safe_dispatch(handler, event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _safe_dispatch(self, handler: EventHandler, event: dict[str, Any]) -> None:
        try:
            await handler(event)
        except Exception:
            logger.exception("Event handler error for %s", event.get("type", "unknown"))

    async def drain(self) -> None:
        """Wait until every handler dispatched so far has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_history(self, event_type: str | None = None) -> list[dict[str, Any]]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e["type"] == event_type]

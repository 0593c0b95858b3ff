"""Per-subscriber periodic limit evaluation."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Union

from taskquota.tracking._time import utcnow
from taskquota.tracking.event_bus import COMPLETION_RECORDED, LIMITS_EVALUATED, EventBus
from taskquota.tracking.limits import LimitConfig, LimitDecision, evaluate
from taskquota.tracking.stats_cache import StatsCache

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = timedelta(seconds=30)

DecisionCallback = Callable[[LimitDecision], Union[Awaitable[None], None]]


class SyncLoop:
    """Keep one subscriber's :class:`LimitDecision` current.

    On :meth:`start` the loop evaluates immediately and then every
    *sync_interval*, refreshing the cache entry from the log whenever it is
    older than the interval.  When an *event_bus* is given, a
    ``completion.recorded`` event for the same key triggers an extra
    evaluation straight away.

    The loop is a scoped resource: once :meth:`stop` returns no further
    evaluation runs and no decision is delivered.  Prefer::

        async with SyncLoop(cache, task_id, user_id, limits, on_decision):
            ...

    Parameters
    ----------
    cache:
        Shared :class:`StatsCache`.
    task_id, user_id:
        The key being tracked.  A falsy id makes every tick a no-op, as
        happens before the user profile has been resolved.
    limits:
        The task's :class:`LimitConfig`.
    on_decision:
        Called (and awaited if it returns an awaitable) with every decision.
    event_bus:
        Optional bus for out-of-band refreshes and ``limits.evaluated``.
    sync_interval:
        Tick period, also used as the cache staleness threshold.
    clock:
        Callable returning the current aware datetime.
    """

    def __init__(
        self,
        cache: StatsCache,
        task_id: int | None,
        user_id: int | None,
        limits: LimitConfig,
        on_decision: DecisionCallback | None = None,
        event_bus: EventBus | None = None,
        sync_interval: timedelta = DEFAULT_SYNC_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.cache = cache
        self.task_id = task_id
        self.user_id = user_id
        self.limits = limits
        self.on_decision = on_decision
        self.event_bus = event_bus
        self.sync_interval = sync_interval
        self._clock = clock
        self.latest: LimitDecision | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    async def tick(self) -> LimitDecision | None:
        """Evaluate once and publish the decision; ``None`` if skipped."""
        if self._closed or not self.task_id or not self.user_id:
            return None

        now = self._clock()
        stats = await self.cache.ensure_fresh(
            self.task_id, self.user_id, staleness=self.sync_interval, now=now,
        )
        decision = evaluate(stats, self.limits, now)

        # stop() may have been called while the cache was refreshing.
        if self._closed:
            return None
        self.latest = decision
        await self._publish(decision)
        return decision

    async def _publish(self, decision: LimitDecision) -> None:
        if self.on_decision is not None:
            result = self.on_decision(decision)
            if inspect.isawaitable(result):
                await result
        if self.event_bus is not None:
            await self.event_bus.emit(LIMITS_EVALUATED, {
                "task_id": self.task_id,
                "user_id": self.user_id,
                "decision": decision.to_dict(),
            })

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Error checking task limits for task %s user %s",
                self.task_id, self.user_id,
            )

    async def _run(self) -> None:
        interval = self.sync_interval.total_seconds()
        while not self._stop_event.is_set():
            await self._safe_tick()
            if interval > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass  # next tick
            else:
                await asyncio.sleep(0)

    async def _on_completion(self, event: dict[str, Any]) -> None:
        if self._closed:
            return
        if event.get("task_id") == self.task_id and event.get("user_id") == self.user_id:
            await self._safe_tick()

    def start(self) -> None:
        """Begin ticking.  A loop can be started only once."""
        if self._closed or self._task is not None:
            raise RuntimeError("SyncLoop has already been started")
        if self.event_bus is not None:
            self.event_bus.subscribe(COMPLETION_RECORDED, self._on_completion)
        self._task = asyncio.create_task(
            self._run(), name=f"sync-loop-{self.task_id}-{self.user_id}",
        )

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()
        if self.event_bus is not None:
            self.event_bus.unsubscribe(COMPLETION_RECORDED, self._on_completion)
        # Called from inside the loop (e.g. by on_decision): the stop event
        # ends it once the current tick returns.
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

    async def __aenter__(self) -> SyncLoop:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

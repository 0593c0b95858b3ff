"""Engine container: wires storage, cache, recorder and subscribers together."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from typing import Callable

from taskquota.config_loader import EngineConfig
from taskquota.errors import RemoteError, ValidationError
from taskquota.remote.submission import TaskSubmitter
from taskquota.remote.task_api import TaskApiClient
from taskquota.tracking._time import ensure_aware, utcnow
from taskquota.tracking.completion_log import CompletionLog
from taskquota.tracking.database import Database
from taskquota.tracking.event_bus import EventBus
from taskquota.tracking.limits import LimitConfig, LimitDecision, evaluate
from taskquota.tracking.monitors import cache_sweeper
from taskquota.tracking.recorder import CompletionRecorder, validate_key
from taskquota.tracking.stats_cache import CompletionStats, StatsCache
from taskquota.tracking.sync_loop import DecisionCallback, SyncLoop

logger = logging.getLogger(__name__)


class Engine:
    """Central container for all engine components."""

    def __init__(
        self,
        config: EngineConfig,
        db: Database,
        log: CompletionLog,
        cache: StatsCache,
        recorder: CompletionRecorder,
        event_bus: EventBus,
        api: TaskApiClient | None = None,
        submitter: TaskSubmitter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config
        self.db = db
        self.log = log
        self.cache = cache
        self.recorder = recorder
        self.event_bus = event_bus
        self.api = api
        self.submitter = submitter
        self._clock = clock
        self._task_limits: dict[int, LimitConfig] = {}
        self._loops: list[SyncLoop] = []
        self._sweeper_stop: asyncio.Event | None = None
        self._sweeper_task: asyncio.Task | None = None
        self._shutting_down = False

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def now(self) -> datetime:
        return ensure_aware(self._clock())

    def limits_for(self, task_id: int) -> LimitConfig:
        """Limits from the remote task list, else the configured ones."""
        return self._task_limits.get(task_id) or self.config.limits_for(task_id)

    async def load_task_limits(self) -> int:
        """Fetch the task list and cache each task's ``hourly_limit`` / ``daily_limit``.

        Values missing from a task payload fall back to the configured
        limits.  On a remote failure the previous limits are kept.
        Returns the number of tasks loaded.
        """
        if self.api is None:
            return 0
        try:
            tasks = await self.api.get_tasks()
        except RemoteError as exc:
            logger.warning("Could not load task limits: %s", exc)
            return 0

        loaded: dict[int, LimitConfig] = {}
        for task in tasks or []:
            task_id = task.get("id") if isinstance(task, dict) else None
            if not isinstance(task_id, int) or isinstance(task_id, bool):
                continue
            try:
                loaded[task_id] = LimitConfig.from_task(
                    task, defaults=self.config.limits_for(task_id),
                )
            except (ValidationError, TypeError, ValueError) as exc:
                logger.warning("Ignoring limits for task %s: %s", task_id, exc)
        self._task_limits = loaded
        logger.info("Loaded limits for %d task(s)", len(loaded))
        return len(loaded)

    async def check(
        self,
        task_id: int,
        user_id: int,
        limits: LimitConfig | None = None,
    ) -> tuple[CompletionStats, LimitDecision]:
        """One-shot evaluation for *task_id* / *user_id* using the shared cache."""
        validate_key(task_id, user_id)
        now = self.now()
        stats = await self.cache.ensure_fresh(
            task_id, user_id, staleness=self.config.sync_interval, now=now,
        )
        return stats, evaluate(stats, limits or self.limits_for(task_id), now)

    def subscribe(
        self,
        task_id: int,
        user_id: int,
        on_decision: DecisionCallback | None = None,
        limits: LimitConfig | None = None,
    ) -> SyncLoop:
        """Create and start a :class:`SyncLoop` owned by the engine.

        Stop it with ``await loop.stop()`` when the subscriber goes away;
        any still running at :meth:`shutdown` are stopped then.
        """
        loop = SyncLoop(
            self.cache,
            task_id,
            user_id,
            limits or self.limits_for(task_id),
            on_decision=on_decision,
            event_bus=self.event_bus,
            sync_interval=self.config.sync_interval,
            clock=self._clock,
        )
        loop.start()
        self._loops = [lp for lp in self._loops if not lp.closed]
        self._loops.append(loop)
        return loop

    async def prune_now(self) -> int:
        """Apply the retention cutoff immediately."""
        return await self.log.prune(self.now() - self.config.log_retention)

    def start_maintenance(self) -> None:
        """Start the background cache sweeper (idempotent)."""
        if self._sweeper_task is not None:
            return
        self._sweeper_stop = asyncio.Event()
        self._sweeper_task = asyncio.create_task(
            cache_sweeper(
                self.cache,
                self.config.cache_max_age,
                check_interval=self.config.cache_sweep_interval_ms / 1000,
                stop_event=self._sweeper_stop,
            )
        )

    async def shutdown(self) -> None:
        """Stop subscribers and background tasks, then close I/O.  Idempotent."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Engine shutdown initiated")

        for loop in self._loops:
            await loop.stop()
        self._loops.clear()

        if self._sweeper_task is not None:
            self._sweeper_stop.set()
            await asyncio.gather(self._sweeper_task, return_exceptions=True)
            self._sweeper_task = None

        await self.event_bus.drain()

        if self.api is not None:
            try:
                await self.api.close()
            except Exception:
                logger.exception("Error closing task API client")

        try:
            await self.db.close()
        except Exception:
            logger.exception("Error closing database")


async def build_engine(
    config: EngineConfig,
    api_token: str | None = None,
    clock: Callable[[], datetime] = utcnow,
    api: TaskApiClient | None = None,
    load_task_limits: bool = True,
) -> Engine:
    """Open the database and wire every component from *config*.

    A :class:`TaskApiClient` is created when ``config.api.base_url`` is set
    (or *api* is passed); without one the engine can evaluate and record
    but not submit.  With an API and *load_task_limits*, per-task limits are
    fetched from the remote task list before the engine is returned.
    """
    db = Database(config.db_path)
    await db.initialize()

    event_bus = EventBus()
    log = CompletionLog(db, retention=config.log_retention, clock=clock)
    cache = StatsCache(log, staleness=config.sync_interval, clock=clock)
    recorder = CompletionRecorder(log, cache, event_bus=event_bus, clock=clock)

    if api is None and config.api.base_url:
        api = TaskApiClient(
            config.api.base_url,
            token=api_token if api_token is not None else os.environ.get("TASKQUOTA_API_TOKEN"),
            timeout=config.api.timeout_seconds,
        )
    submitter = TaskSubmitter(api, recorder, event_bus=event_bus) if api else None

    logger.info(
        "Engine ready (db=%s, sync=%s, retention=%s)",
        config.db_path, config.sync_interval, config.log_retention,
    )
    engine = Engine(
        config=config,
        db=db,
        log=log,
        cache=cache,
        recorder=recorder,
        event_bus=event_bus,
        api=api,
        submitter=submitter,
        clock=clock,
    )
    if api is not None and load_task_limits:
        await engine.load_task_limits()
    return engine

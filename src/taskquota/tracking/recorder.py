"""Record server-accepted completions and push the new state to subscribers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from taskquota.errors import ValidationError
from taskquota.tracking._time import ensure_aware, utcnow
from taskquota.tracking.completion_log import CompletionLog, CompletionRecord
from taskquota.tracking.event_bus import COMPLETION_RECORDED, EventBus
from taskquota.tracking.stats_cache import CompletionStats, StatsCache

logger = logging.getLogger(__name__)


def validate_key(task_id, user_id) -> None:
    """Raise :class:`ValidationError` unless both ids are positive integers."""
    for name, value in (("task_id", task_id), ("user_id", user_id)):
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ValidationError(f"{name} must be a positive integer, got {value!r}")


class CompletionRecorder:
    """Append a completion, invalidate its cache entry and announce it.

    Only call :meth:`record` once the remote API has confirmed the
    submission; a rejected submission must leave no trace in the log.
    """

    def __init__(
        self,
        log: CompletionLog,
        cache: StatsCache,
        event_bus: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._log = log
        self._cache = cache
        self._event_bus = event_bus
        self._clock = clock

    async def record(
        self, task_id: int, user_id: int, now: datetime | None = None
    ) -> CompletionStats:
        """Persist a completion at *now* and return the refreshed stats.

        Raises
        ------
        ValidationError
            If either identifier is missing or malformed.
        StorageError
            If the log write fails.
        """
        validate_key(task_id, user_id)
        now = ensure_aware(now or self._clock())

        record = await self._log.append(
            CompletionRecord(task_id=task_id, user_id=user_id, completed_at=now),
            now=now,
        )
        self._cache.invalidate(task_id, user_id)
        stats = await self._cache.ensure_fresh(task_id, user_id, now=now)
        logger.info(
            "Task completion recorded: task %s user %s (hourly=%d daily=%d)",
            task_id, user_id, stats.hourly_count, stats.daily_count,
        )

        if self._event_bus is not None:
            await self._event_bus.emit(COMPLETION_RECORDED, {
                "task_id": task_id,
                "user_id": user_id,
                "record_id": record.id,
                "completed_at": now.isoformat(),
            })
        return stats

"""Keyed cache of per-(task, user) completion stats with staleness control."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable

from taskquota.tracking._time import ensure_aware, start_of_local_day, utcnow
from taskquota.tracking.completion_log import CompletionLog, CompletionRecord

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(seconds=30)
HOURLY_WINDOW = timedelta(hours=1)

CacheKey = tuple[int, int]


@dataclass(frozen=True)
class CompletionStats:
    """Aggregate view of one key's completions at ``last_sync_at``."""

    task_id: int
    user_id: int
    hourly_count: int
    daily_count: int
    last_completion: datetime | None
    last_sync_at: datetime

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "user_id": self.user_id,
            "hourly_count": self.hourly_count,
            "daily_count": self.daily_count,
            "last_completion": (
                self.last_completion.isoformat() if self.last_completion else None
            ),
            "last_sync_at": self.last_sync_at.isoformat(),
        }


def summarize(
    task_id: int,
    user_id: int,
    records: list[CompletionRecord],
    now: datetime,
) -> CompletionStats:
    """Reduce *records* to stats as of *now*.

    The hourly window is rolling (``now - 1h``); the daily window starts at
    local midnight.
    """
    hour_ago = now - HOURLY_WINDOW
    day_start = start_of_local_day(now)
    hourly = sum(1 for r in records if hour_ago <= r.completed_at <= now)
    daily = sum(1 for r in records if day_start <= r.completed_at <= now)
    ordered = sorted(records, key=lambda r: r.completed_at, reverse=True)
    return CompletionStats(
        task_id=task_id,
        user_id=user_id,
        hourly_count=hourly,
        daily_count=daily,
        last_completion=ordered[0].completed_at if ordered else None,
        last_sync_at=now,
    )


class StatsCache:
    """Owned cache mapping ``(task_id, user_id)`` to :class:`CompletionStats`.

    Entries are only ever replaced wholesale.  Concurrent refreshes of the
    same key are harmless: the last writer wins.

    Parameters
    ----------
    log:
        The :class:`CompletionLog` entries are derived from.
    staleness:
        Default maximum entry age before :meth:`ensure_fresh` recomputes.
    clock:
        Callable returning the current aware datetime.
    """

    def __init__(
        self,
        log: CompletionLog,
        staleness: timedelta = DEFAULT_STALENESS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._log = log
        self.staleness = staleness
        self._clock = clock
        self._entries: dict[CacheKey, CompletionStats] = {}
        self._invalidated: set[CacheKey] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return key in self._entries

    def get(self, task_id: int, user_id: int) -> CompletionStats | None:
        return self._entries.get((task_id, user_id))

    def is_stale(
        self,
        task_id: int,
        user_id: int,
        staleness: timedelta | None = None,
        now: datetime | None = None,
    ) -> bool:
        key = (task_id, user_id)
        entry = self._entries.get(key)
        if entry is None or key in self._invalidated:
            return True
        now = ensure_aware(now or self._clock())
        staleness = self.staleness if staleness is None else staleness
        return now - entry.last_sync_at >= staleness

    async def ensure_fresh(
        self,
        task_id: int,
        user_id: int,
        staleness: timedelta | None = None,
        now: datetime | None = None,
    ) -> CompletionStats:
        """Return the entry for the key, recomputing it from the log if stale."""
        now = ensure_aware(now or self._clock())
        if not self.is_stale(task_id, user_id, staleness=staleness, now=now):
            return self._entries[(task_id, user_id)]
        return await self.refresh(task_id, user_id, now=now)

    async def refresh(
        self, task_id: int, user_id: int, now: datetime | None = None
    ) -> CompletionStats:
        """Unconditionally recompute and store the entry for the key."""
        key = (task_id, user_id)
        now = ensure_aware(now or self._clock())
        # query() fails open, so a storage fault yields zero counts here.
        records = await self._log.query(task_id, user_id)
        stats = summarize(task_id, user_id, records, now)

        previous = self._entries.get(key)
        if previous is not None and previous.last_sync_at > stats.last_sync_at:
            # Keep last_sync_at monotonic if a refresh ran with an older clock.
            stats = replace(stats, last_sync_at=previous.last_sync_at)
        self._entries[key] = stats
        self._invalidated.discard(key)
        logger.debug(
            "Refreshed stats for task %s user %s: hourly=%d daily=%d",
            task_id, user_id, stats.hourly_count, stats.daily_count,
        )
        return stats

    def invalidate(self, task_id: int, user_id: int) -> None:
        """Force the next :meth:`ensure_fresh` for the key to recompute."""
        self._invalidated.add((task_id, user_id))

    def sweep_stale(self, max_age: timedelta, now: datetime | None = None) -> int:
        """Drop entries not refreshed within *max_age*; return how many went."""
        now = ensure_aware(now or self._clock())
        expired = [
            key for key, entry in self._entries.items()
            if now - entry.last_sync_at >= max_age
        ]
        for key in expired:
            del self._entries[key]
            self._invalidated.discard(key)
        if expired:
            logger.debug("Swept %d stale cache entries", len(expired))
        return len(expired)

"""Background maintenance tasks for the engine."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from taskquota.tracking.stats_cache import StatsCache

logger = logging.getLogger(__name__)


async def cache_sweeper(
    cache: StatsCache,
    max_age: timedelta,
    check_interval: float = 300,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Periodically drop cache entries nobody has refreshed within *max_age*.

    Args:
        cache: The StatsCache to sweep
        max_age: Entries whose last refresh is at least this old are dropped
        check_interval: Seconds between sweeps (default 5 minutes)
        stop_event: Optional event to signal graceful shutdown
    """
    if stop_event is None:
        stop_event = asyncio.Event()

    while not stop_event.is_set():
        try:
            removed = cache.sweep_stale(max_age)
            if removed:
                logger.info("Cache sweeper: dropped %d stale entries", removed)
        except Exception:
            logger.warning("Cache sweep failed", exc_info=True)

        if check_interval > 0:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=check_interval)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(0)

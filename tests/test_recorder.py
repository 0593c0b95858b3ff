"""Tests for CompletionRecorder."""

from __future__ import annotations

from datetime import timedelta

import pytest

from taskquota.errors import StorageError, ValidationError
from taskquota.tracking.completion_log import CompletionLog
from taskquota.tracking.database import Database
from taskquota.tracking.event_bus import COMPLETION_RECORDED, EventBus
from taskquota.tracking.limits import LimitConfig, evaluate
from taskquota.tracking.recorder import CompletionRecorder
from taskquota.tracking.stats_cache import StatsCache


@pytest.fixture
def recorder(log: CompletionLog, cache: StatsCache, event_bus: EventBus, clock):
    return CompletionRecorder(log, cache, event_bus=event_bus, clock=clock)


async def test_record_appends_and_refreshes_cache(recorder, log, cache, noon):
    await cache.ensure_fresh(5, 9)

    stats = await recorder.record(5, 9)

    assert stats.hourly_count == 1
    assert stats.daily_count == 1
    assert stats.last_completion == noon
    assert cache.get(5, 9) is stats
    assert len(await log.query(5, 9)) == 1


async def test_record_emits_event(recorder, event_bus, noon):
    await recorder.record(5, 9)
    await event_bus.drain()

    events = event_bus.get_history(COMPLETION_RECORDED)
    assert len(events) == 1
    assert events[0]["task_id"] == 5
    assert events[0]["user_id"] == 9
    assert events[0]["completed_at"] == noon.isoformat()


async def test_record_uses_explicit_time(recorder, log, noon):
    at = noon - timedelta(minutes=3)
    await recorder.record(5, 9, now=at)

    records = await log.query(5, 9)
    assert records[0].completed_at == at


@pytest.mark.parametrize("task_id, user_id", [
    (0, 1), (None, 1), (1, None), (1, -3), ("1", 2), (True, 2),
])
async def test_record_rejects_bad_identifiers(recorder, log, task_id, user_id):
    with pytest.raises(ValidationError):
        await recorder.record(task_id, user_id)
    assert await log.count() == 0


async def test_record_propagates_storage_error(recorder, db: Database, event_bus):
    await db.close()

    with pytest.raises(StorageError):
        await recorder.record(5, 9)
    assert event_bus.get_history(COMPLETION_RECORDED) == []


async def test_three_quick_completions_hit_hourly_limit_during_cooldown(recorder, cache, clock, noon):
    """hourly=3/daily=10, completions at 0, 10m, 20m, evaluated at 25m."""
    config = LimitConfig(hourly_limit=3, daily_limit=10, cooldown_duration_ms=1_800_000)
    for offset in (0, 10, 20):
        clock.now = noon + timedelta(minutes=offset)
        await recorder.record(1, 1)

    clock.now = noon + timedelta(minutes=25)
    stats = await cache.ensure_fresh(1, 1)
    decision = evaluate(stats, config, clock.now)

    assert stats.hourly_count == 3
    assert decision.can_complete is False
    assert decision.is_on_cooldown is True
    assert decision.limit_message == "Hourly limit (3) reached. Next attempt available in 60m"


async def test_record_without_event_bus(log, cache, clock):
    recorder = CompletionRecorder(log, cache, clock=clock)

    stats = await recorder.record(1, 2)

    assert stats.hourly_count == 1

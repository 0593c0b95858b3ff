"""Tests for build_engine and the Engine container lifecycle."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import httpx
import pytest

from taskquota.config_loader import ApiConfig, EngineConfig
from taskquota.engine import build_engine
from taskquota.errors import ValidationError
from taskquota.remote.task_api import TaskApiClient
from taskquota.tracking.completion_log import CompletionRecord
from taskquota.tracking.limits import LimitConfig


@pytest.fixture
def config(tmp_path):
    return EngineConfig(
        db_path=str(tmp_path / "completions.db"),
        sync_interval_ms=60_000,
        task_limits={7: LimitConfig(hourly_limit=1)},
    )


@pytest.fixture
async def engine(config, clock):
    eng = await build_engine(config, clock=clock)
    yield eng
    await eng.shutdown()


async def test_build_without_api_has_no_submitter(engine):
    assert engine.api is None
    assert engine.submitter is None
    assert engine.db.is_open


async def test_build_with_api_creates_submitter(config, clock):
    config.api = ApiConfig(base_url="https://tasks.example.com/api")
    eng = await build_engine(config, api_token="tok", clock=clock, load_task_limits=False)
    try:
        assert eng.api is not None
        assert eng.api.token == "tok"
        assert eng.submitter is not None
    finally:
        await eng.shutdown()


async def test_check_applies_task_limits(engine, clock):
    await engine.recorder.record(7, 1)
    clock.advance(minutes=31)

    stats, decision = await engine.check(7, 1)

    assert stats.hourly_count == 1
    assert decision.is_on_cooldown is False
    assert decision.can_complete is False
    assert decision.limit_message == "Hourly limit (1) reached. Next attempt available in 60m"


async def test_check_rejects_invalid_key(engine):
    with pytest.raises(ValidationError):
        await engine.check(0, 1)


async def test_subscribe_delivers_and_shutdown_stops(engine):
    received = []
    loop = engine.subscribe(7, 1, on_decision=received.append)

    async def _wait():
        while not received:
            await asyncio.sleep(0.005)
    await asyncio.wait_for(_wait(), timeout=2.0)

    await engine.shutdown()
    assert loop.closed
    assert engine.shutting_down


async def test_shutdown_is_idempotent(engine):
    await engine.shutdown()
    await engine.shutdown()
    assert not engine.db.is_open


async def test_prune_now_applies_retention(engine, noon):
    await engine.log.append(CompletionRecord(7, 1, noon - timedelta(hours=30)), now=noon - timedelta(hours=30))
    await engine.log.append(CompletionRecord(7, 1, noon - timedelta(hours=2)), now=noon - timedelta(hours=30))

    removed = await engine.prune_now()

    assert removed == 1
    assert await engine.log.count() == 1


async def test_start_maintenance_is_idempotent(engine):
    engine.start_maintenance()
    task = engine._sweeper_task
    engine.start_maintenance()
    assert engine._sweeper_task is task

    await engine.shutdown()
    assert task.done()


# ------------------------------------------------------------------
# Per-task limits from the remote task list
# ------------------------------------------------------------------


def _api(handler) -> TaskApiClient:
    return TaskApiClient(
        "https://tasks.example.com/api", token="tok", transport=httpx.MockTransport(handler),
    )


async def test_task_limits_loaded_from_remote(config, clock):
    tasks = [
        {"id": 3, "title": "Follow", "hourly_limit": 2, "daily_limit": 6},
        {"id": 7, "title": "Share", "hourly_limit": None, "daily_limit": 4},
        {"id": 8, "title": "Broken", "hourly_limit": -1},
        {"title": "No id", "hourly_limit": 1},
    ]

    def handler(request):
        assert request.url.path == "/api/tasks"
        return httpx.Response(200, json={"success": True, "data": tasks})

    eng = await build_engine(config, clock=clock, api=_api(handler))
    try:
        assert eng.limits_for(3) == LimitConfig(hourly_limit=2, daily_limit=6)
        # Missing values fall back to the configured task limits.
        assert eng.limits_for(7) == LimitConfig(hourly_limit=1, daily_limit=4)
        assert eng.limits_for(8) == LimitConfig()
        assert eng.limits_for(99) == LimitConfig()
    finally:
        await eng.shutdown()


async def test_remote_limits_drive_decisions(config, clock):
    def handler(request):
        return httpx.Response(200, json={"success": True, "data": [{"id": 3, "daily_limit": 1}]})

    eng = await build_engine(config, clock=clock, api=_api(handler))
    try:
        await eng.recorder.record(3, 1)
        clock.advance(minutes=31)

        _, decision = await eng.check(3, 1)
        assert decision.can_complete is False
        assert decision.limit_message.startswith("Daily limit (1) reached.")
    finally:
        await eng.shutdown()


async def test_remote_failure_keeps_configured_limits(config, clock):
    def handler(request):
        return httpx.Response(500, json={"success": False, "message": "down"})

    eng = await build_engine(config, clock=clock, api=_api(handler))
    try:
        assert eng.limits_for(7) == LimitConfig(hourly_limit=1)
        assert await eng.load_task_limits() == 0
    finally:
        await eng.shutdown()


async def test_load_task_limits_without_api(engine):
    assert await engine.load_task_limits() == 0

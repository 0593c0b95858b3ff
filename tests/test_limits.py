"""Tests for LimitConfig and the evaluate() decision function."""

from __future__ import annotations

import itertools
from datetime import timedelta

import pytest

from taskquota.errors import ValidationError
from taskquota.tracking.limits import LimitConfig, LimitDecision, evaluate
from taskquota.tracking.stats_cache import CompletionStats


def _stats(now, hourly=0, daily=0, last=None):
    return CompletionStats(
        task_id=1, user_id=1, hourly_count=hourly, daily_count=daily,
        last_completion=last, last_sync_at=now,
    )


# ------------------------------------------------------------------
# No limits triggered
# ------------------------------------------------------------------


def test_no_completions_can_complete(noon):
    decision = evaluate(_stats(noon), LimitConfig(hourly_limit=3, daily_limit=10), noon)

    assert decision == LimitDecision(
        can_complete=True,
        is_on_cooldown=False,
        cooldown_remaining=None,
        limit_message=None,
        cooldown_time_left=None,
        hourly_completions=0,
        daily_completions=0,
    )


def test_zero_limits_mean_unlimited(noon):
    stats = _stats(noon, hourly=500, daily=5000, last=noon - timedelta(hours=2))

    decision = evaluate(stats, LimitConfig(), noon)

    assert decision.can_complete is True
    assert decision.limit_message is None


# ------------------------------------------------------------------
# Cooldown
# ------------------------------------------------------------------


def test_cooldown_active(noon):
    stats = _stats(noon, hourly=1, daily=1, last=noon - timedelta(minutes=5))

    decision = evaluate(stats, LimitConfig(), noon)

    assert decision.can_complete is False
    assert decision.is_on_cooldown is True
    assert decision.cooldown_remaining == timedelta(minutes=25)
    assert decision.cooldown_time_left == "25m"
    assert decision.limit_message == "Please wait 25m before attempting this task again"


def test_cooldown_minutes_round_up(noon):
    stats = _stats(noon, last=noon - timedelta(minutes=5, seconds=30))

    decision = evaluate(stats, LimitConfig(), noon)

    assert decision.cooldown_remaining == timedelta(minutes=24, seconds=30)
    assert decision.cooldown_time_left == "25m"


def test_cooldown_expires_exactly_at_duration(noon):
    stats = _stats(noon, last=noon - timedelta(minutes=30))

    decision = evaluate(stats, LimitConfig(), noon)

    assert decision.is_on_cooldown is False
    assert decision.can_complete is True


def test_custom_cooldown_duration(noon):
    stats = _stats(noon, last=noon - timedelta(minutes=2))

    decision = evaluate(stats, LimitConfig(cooldown_duration_ms=60_000), noon)

    assert decision.is_on_cooldown is False


# ------------------------------------------------------------------
# Hourly / daily
# ------------------------------------------------------------------


def test_hourly_limit_message(noon):
    decision = evaluate(_stats(noon, hourly=3, daily=3), LimitConfig(hourly_limit=3), noon)

    assert decision.can_complete is False
    assert decision.is_on_cooldown is False
    assert decision.limit_message == "Hourly limit (3) reached. Next attempt available in 60m"


def test_hourly_below_limit_allows(noon):
    decision = evaluate(_stats(noon, hourly=2), LimitConfig(hourly_limit=3), noon)

    assert decision.can_complete is True


def test_daily_limit_message_counts_hours_to_midnight(noon):
    decision = evaluate(_stats(noon, daily=10), LimitConfig(daily_limit=10), noon)

    assert decision.can_complete is False
    assert decision.limit_message == "Daily limit (10) reached. Next attempt available in 12h"


def test_daily_hours_round_up(noon):
    now = noon + timedelta(minutes=30)

    decision = evaluate(_stats(now, daily=2), LimitConfig(daily_limit=2), now)

    assert decision.limit_message.endswith("available in 12h")


# ------------------------------------------------------------------
# Precedence
# ------------------------------------------------------------------


def test_daily_message_wins_over_hourly(noon):
    decision = evaluate(
        _stats(noon, hourly=3, daily=10), LimitConfig(hourly_limit=3, daily_limit=10), noon,
    )

    assert decision.limit_message.startswith("Daily limit (10) reached")


def test_hourly_message_wins_over_cooldown_but_cooldown_flag_stays(noon):
    stats = _stats(noon, hourly=3, daily=3, last=noon - timedelta(minutes=5))

    decision = evaluate(stats, LimitConfig(hourly_limit=3, daily_limit=10), noon)

    assert decision.can_complete is False
    assert decision.is_on_cooldown is True
    assert decision.cooldown_time_left == "25m"
    assert decision.limit_message.startswith("Hourly limit (3) reached")


def test_can_complete_iff_no_check_triggers(noon):
    config = LimitConfig(hourly_limit=2, daily_limit=4)
    lasts = [None, noon - timedelta(minutes=10), noon - timedelta(hours=2)]
    for hourly, daily, last in itertools.product(range(4), range(6), lasts):
        decision = evaluate(_stats(noon, hourly, daily, last), config, noon)
        cooldown = last is not None and noon - last < config.cooldown
        blocked = cooldown or hourly >= 2 or daily >= 4
        assert decision.can_complete is (not blocked)
        assert decision.is_on_cooldown is cooldown
        assert (decision.limit_message is None) is (not blocked)


# ------------------------------------------------------------------
# LimitConfig
# ------------------------------------------------------------------


@pytest.mark.parametrize("kwargs", [
    {"hourly_limit": -1},
    {"daily_limit": -5},
    {"cooldown_duration_ms": 0},
    {"cooldown_duration_ms": -100},
    {"hourly_limit": 1.5},
])
def test_invalid_limit_config(kwargs):
    with pytest.raises(ValidationError):
        LimitConfig(**kwargs)


def test_from_task_reads_limits_and_keeps_default_cooldown():
    defaults = LimitConfig(hourly_limit=1, daily_limit=2, cooldown_duration_ms=90_000)

    config = LimitConfig.from_task({"id": 4, "hourly_limit": 5, "daily_limit": None}, defaults)

    assert config == LimitConfig(hourly_limit=5, daily_limit=2, cooldown_duration_ms=90_000)


def test_from_task_without_limits_is_unlimited():
    assert LimitConfig.from_task({"id": 4}) == LimitConfig()


def test_decision_to_dict(noon):
    stats = _stats(noon, hourly=1, daily=1, last=noon - timedelta(minutes=10))

    data = evaluate(stats, LimitConfig(), noon).to_dict()

    assert data["can_complete"] is False
    assert data["cooldown_remaining_ms"] == 20 * 60 * 1000
    assert data["cooldown_time_left"] == "20m"
    assert data["hourly_completions"] == 1

"""Limit configuration and the pure cooldown / quota decision function."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from taskquota.errors import ValidationError
from taskquota.tracking._time import ceil_units, ensure_aware, ms, next_local_midnight
from taskquota.tracking.stats_cache import CompletionStats

DEFAULT_COOLDOWN_MS = 30 * 60 * 1000

_MINUTE = timedelta(minutes=1)
_HOUR = timedelta(hours=1)


@dataclass(frozen=True)
class LimitConfig:
    """Per-task throttling policy.  ``0`` disables the hourly/daily quota."""

    hourly_limit: int = 0
    daily_limit: int = 0
    cooldown_duration_ms: int = DEFAULT_COOLDOWN_MS

    def __post_init__(self) -> None:
        for name in ("hourly_limit", "daily_limit"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"{name} must be an integer >= 0, got {value!r}")
        cooldown = self.cooldown_duration_ms
        if not isinstance(cooldown, int) or isinstance(cooldown, bool) or cooldown <= 0:
            raise ValidationError(f"cooldown_duration_ms must be an integer > 0, got {cooldown!r}")

    @property
    def cooldown(self) -> timedelta:
        return ms(self.cooldown_duration_ms)

    @classmethod
    def from_task(cls, task: dict[str, Any], defaults: LimitConfig | None = None) -> LimitConfig:
        """Build the policy for a task payload from the remote API.

        Missing or null ``hourly_limit`` / ``daily_limit`` fall back to
        *defaults* (unlimited when no defaults are given).
        """
        defaults = defaults or cls()
        hourly = task.get("hourly_limit")
        daily = task.get("daily_limit")
        return cls(
            hourly_limit=defaults.hourly_limit if hourly is None else int(hourly),
            daily_limit=defaults.daily_limit if daily is None else int(daily),
            cooldown_duration_ms=defaults.cooldown_duration_ms,
        )


@dataclass(frozen=True)
class LimitDecision:
    can_complete: bool
    is_on_cooldown: bool
    cooldown_remaining: timedelta | None
    limit_message: str | None
    cooldown_time_left: str | None = None
    hourly_completions: int = 0
    daily_completions: int = 0

    def to_dict(self) -> dict:
        return {
            "can_complete": self.can_complete,
            "is_on_cooldown": self.is_on_cooldown,
            "cooldown_remaining_ms": (
                int(self.cooldown_remaining / timedelta(milliseconds=1))
                if self.cooldown_remaining is not None else None
            ),
            "cooldown_time_left": self.cooldown_time_left,
            "limit_message": self.limit_message,
            "hourly_completions": self.hourly_completions,
            "daily_completions": self.daily_completions,
        }


def evaluate(stats: CompletionStats, config: LimitConfig, now: datetime) -> LimitDecision:
    """Decide whether the user behind *stats* may complete the task at *now*.

    Checks run cooldown, then hourly, then daily.  Each triggered check
    blocks completion and overwrites the message, so the daily message wins
    over the hourly one, which wins over the cooldown one.
    ``is_on_cooldown`` reflects the cooldown check alone.
    """
    now = ensure_aware(now)
    can_complete = True
    is_on_cooldown = False
    cooldown_remaining = None
    cooldown_time_left = None
    limit_message = None

    if stats.last_completion is not None:
        elapsed = now - stats.last_completion
        if elapsed < config.cooldown:
            is_on_cooldown = True
            cooldown_remaining = config.cooldown - elapsed
            cooldown_time_left = f"{ceil_units(cooldown_remaining, _MINUTE)}m"
            limit_message = (
                f"Please wait {cooldown_time_left} before attempting this task again"
            )
            can_complete = False

    if config.hourly_limit > 0 and stats.hourly_count >= config.hourly_limit:
        # Estimated as a full hour from now rather than when the oldest
        # completion in the window ages out.
        next_hour = now + _HOUR
        minutes_until_reset = ceil_units(next_hour - now, _MINUTE)
        limit_message = (
            f"Hourly limit ({config.hourly_limit}) reached. "
            f"Next attempt available in {minutes_until_reset}m"
        )
        can_complete = False

    if config.daily_limit > 0 and stats.daily_count >= config.daily_limit:
        hours_until_reset = ceil_units(next_local_midnight(now) - now, _HOUR)
        limit_message = (
            f"Daily limit ({config.daily_limit}) reached. "
            f"Next attempt available in {hours_until_reset}h"
        )
        can_complete = False

    return LimitDecision(
        can_complete=can_complete,
        is_on_cooldown=is_on_cooldown,
        cooldown_remaining=cooldown_remaining,
        limit_message=limit_message,
        cooldown_time_left=cooldown_time_left,
        hourly_completions=stats.hourly_count,
        daily_completions=stats.daily_count,
    )

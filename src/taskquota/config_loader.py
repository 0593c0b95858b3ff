"""Load and validate engine configuration from a YAML file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from taskquota.errors import ValidationError
from taskquota.tracking.limits import DEFAULT_COOLDOWN_MS, LimitConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _get_required(data: dict, key: str, context: str = "config") -> Any:
    """Get a required key from a dict, raising ValueError with a clear message."""
    keys = key.split(".")
    current = data
    for k in keys:
        if not isinstance(current, dict) or k not in current:
            raise ValueError(f"Missing required key '{key}' in {context}")
        current = current[k]
    return current


def _validate_range(value: Any, name: str, minimum: int = 1, maximum: int | None = None) -> None:
    """Validate a numeric config value is within bounds."""
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < minimum:
        raise ValueError(f"Config '{name}' must be >= {minimum}, got {value!r}")
    if maximum is not None and value > maximum:
        raise ValueError(f"Config '{name}' must be <= {maximum}, got {value!r}")


def _get_section(data: dict, key: str, context: str) -> dict:
    """Return an optional top-level section, which must be a mapping if present."""
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{key}' in {context} must be a mapping, got {section!r}")
    return section


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ApiConfig:
    """Remote task API connection settings."""

    base_url: str = ""
    timeout_seconds: float = 10.0


@dataclass
class DashboardConfig:
    host: str = "127.0.0.1"
    port: int = 8430


@dataclass
class EngineConfig:
    """Top-level settings loaded from config/limits.yaml."""

    db_path: str
    cooldown_duration_ms: int = DEFAULT_COOLDOWN_MS
    sync_interval_ms: int = 30_000
    log_retention_ms: int = 86_400_000
    cache_max_age_ms: int = 3_600_000
    cache_sweep_interval_ms: int = 300_000
    default_hourly_limit: int = 0
    default_daily_limit: int = 0
    task_limits: dict[int, LimitConfig] = field(default_factory=dict)
    api: ApiConfig = field(default_factory=ApiConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)

    @property
    def sync_interval(self) -> timedelta:
        return timedelta(milliseconds=self.sync_interval_ms)

    @property
    def log_retention(self) -> timedelta:
        return timedelta(milliseconds=self.log_retention_ms)

    @property
    def cache_max_age(self) -> timedelta:
        return timedelta(milliseconds=self.cache_max_age_ms)

    @property
    def default_limits(self) -> LimitConfig:
        return LimitConfig(
            hourly_limit=self.default_hourly_limit,
            daily_limit=self.default_daily_limit,
            cooldown_duration_ms=self.cooldown_duration_ms,
        )

    def limits_for(self, task_id: int) -> LimitConfig:
        """Return the configured policy for *task_id*, or the defaults."""
        return self.task_limits.get(task_id, self.default_limits)


def _parse_task_limits(raw: Any, cooldown_ms: int, context: str) -> dict[int, LimitConfig]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"'tasks' in {context} must be a mapping of task id to limits")
    parsed: dict[int, LimitConfig] = {}
    for task_key, limits in raw.items():
        try:
            task_id = int(task_key)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid task id {task_key!r} in {context}") from None
        limits = limits or {}
        if not isinstance(limits, dict):
            raise ValueError(f"Limits for task {task_id} in {context} must be a mapping, got {limits!r}")
        try:
            parsed[task_id] = LimitConfig(
                hourly_limit=limits.get("hourly_limit", 0),
                daily_limit=limits.get("daily_limit", 0),
                cooldown_duration_ms=limits.get("cooldown_duration_ms", cooldown_ms),
            )
        except ValidationError as exc:
            raise ValueError(f"Task {task_id} in {context}: {exc}") from exc
    return parsed


def load_config(path: Path) -> EngineConfig:
    """Load engine configuration from a YAML file.

    Parameters
    ----------
    path:
        Path to the YAML file (e.g. ``config/limits.yaml``).

    Raises
    ------
    FileNotFoundError
        If *path* does not exist.
    ValueError
        If a required key is missing or a value is out of range.
    """
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    context = path.name
    if not isinstance(data, dict):
        raise ValueError(f"{context} must contain a mapping at the top level")
    limits_raw = _get_section(data, "limits", context)
    api_raw = _get_section(data, "api", context)
    dashboard_raw = _get_section(data, "dashboard", context)

    cooldown_ms = limits_raw.get("cooldown_duration_ms", DEFAULT_COOLDOWN_MS)
    _validate_range(cooldown_ms, "limits.cooldown_duration_ms", 1)

    config = EngineConfig(
        db_path=str(Path(_get_required(data, "database.path", context)).expanduser()),
        cooldown_duration_ms=cooldown_ms,
        sync_interval_ms=limits_raw.get("sync_interval_ms", 30_000),
        log_retention_ms=limits_raw.get("log_retention_ms", 86_400_000),
        cache_max_age_ms=limits_raw.get("cache_max_age_ms", 3_600_000),
        cache_sweep_interval_ms=limits_raw.get("cache_sweep_interval_ms", 300_000),
        default_hourly_limit=limits_raw.get("hourly_limit", 0),
        default_daily_limit=limits_raw.get("daily_limit", 0),
        task_limits=_parse_task_limits(data.get("tasks"), cooldown_ms, context),
        api=ApiConfig(
            base_url=api_raw.get("base_url", ""),
            timeout_seconds=api_raw.get("timeout_seconds", 10.0),
        ),
        dashboard=DashboardConfig(
            host=dashboard_raw.get("host", "127.0.0.1"),
            port=dashboard_raw.get("port", 8430),
        ),
    )

    _validate_range(config.sync_interval_ms, "limits.sync_interval_ms", 1)
    _validate_range(config.log_retention_ms, "limits.log_retention_ms", 1)
    _validate_range(config.cache_max_age_ms, "limits.cache_max_age_ms", 1)
    _validate_range(config.cache_sweep_interval_ms, "limits.cache_sweep_interval_ms", 1)
    _validate_range(config.default_hourly_limit, "limits.hourly_limit", 0)
    _validate_range(config.default_daily_limit, "limits.daily_limit", 0)
    _validate_range(config.api.timeout_seconds, "api.timeout_seconds", 0)
    _validate_range(config.dashboard.port, "dashboard.port", 1, 65535)

    if config.log_retention_ms < 86_400_000:
        # Daily counts look back to local midnight, up to 24h ago.
        logger.warning(
            "log_retention_ms=%d is shorter than a day; daily counts will undercount",
            config.log_retention_ms,
        )

    return config


DEFAULT_CONFIG_YAML = """\
# taskquota configuration

database:
  path: ~/.taskquota/completions.db

api:
  base_url: http://127.0.0.1:3000/api
  timeout_seconds: 10

dashboard:
  host: 127.0.0.1
  port: 8430

limits:
  cooldown_duration_ms: 1800000    # 30 minutes
  sync_interval_ms: 30000          # 30 seconds
  log_retention_ms: 86400000       # 24 hours
  cache_max_age_ms: 3600000
  cache_sweep_interval_ms: 300000
  hourly_limit: 0                  # 0 = unlimited
  daily_limit: 0

# Per-task overrides:
# tasks:
#   12:
#     hourly_limit: 3
#     daily_limit: 10
"""

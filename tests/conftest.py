# tests/conftest.py
from datetime import datetime, timedelta

import pytest

from taskquota.tracking.completion_log import CompletionLog
from taskquota.tracking.database import Database
from taskquota.tracking.event_bus import EventBus
from taskquota.tracking.stats_cache import StatsCache


class FakeClock:
    """Settable clock returning aware local datetimes."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def noon():
    """Local noon on a day with no DST transition nearby."""
    return datetime(2024, 5, 15, 12, 0, 0).astimezone()


@pytest.fixture
def clock(noon):
    return FakeClock(noon)


@pytest.fixture
async def db():
    """Create an in-memory database, initialise it, and tear it down after the test."""
    database = Database(":memory:")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def log(db, clock):
    return CompletionLog(db, clock=clock)


@pytest.fixture
def cache(log, clock):
    return StatsCache(log, clock=clock)


@pytest.fixture
def event_bus():
    return EventBus()

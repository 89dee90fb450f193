"""
Pytest fixtures for testing
"""
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from subtracker.application.reminders import ReminderScheduler
from subtracker.application.subscriptions import SubscriptionStore
from subtracker.domain.calendar_math import CalendarMath
from subtracker.domain.subscription import Subscription
from subtracker.infrastructure.db.session import build_engine, build_session_factory, create_schema
from subtracker.infrastructure.storage.kv_store import SqlKeyValueStore
from subtracker.infrastructure.storage.repository import SubscriptionRepository

NAMESPACE = "test"
NOW = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


class RecordingBackend:
    """Reminder backend that keeps registered reminders in memory."""

    def __init__(self):
        self.reminders = {}
        self.cancel_calls = 0
        self.fail_register = False

    def register(self, reminder):
        if self.fail_register:
            raise RuntimeError("backend unavailable")
        self.reminders[reminder.identifier] = reminder

    def cancel_all(self):
        self.cancel_calls += 1
        self.reminders.clear()


class Clock:
    """Movable "now" for tests that cross a day or month boundary."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def calendar():
    """Fixed clock: 2026-03-15 10:00 UTC"""
    return CalendarMath.fixed(NOW)


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def moving_calendar(clock):
    return CalendarMath(timezone.utc, now_fn=clock)


def _memory_engine():
    engine = build_engine("sqlite://")
    create_schema(engine)
    return engine


@pytest.fixture
def db_engine():
    """In-memory SQLite engine for the primary store"""
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def mirror_engine():
    """Separate in-memory SQLite engine for the local mirror"""
    engine = _memory_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def primary_kv(db_engine):
    return SqlKeyValueStore(build_session_factory(db_engine), NAMESPACE)


@pytest.fixture
def mirror_kv(mirror_engine):
    return SqlKeyValueStore(build_session_factory(mirror_engine), NAMESPACE)


@pytest.fixture
def repository(primary_kv, mirror_kv):
    return SubscriptionRepository(primary_kv, mirror_kv)


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def reminder_scheduler(backend, calendar, mirror_kv):
    return ReminderScheduler(backend, calendar, state_store=mirror_kv)


@pytest.fixture
def store(repository, calendar, reminder_scheduler):
    return SubscriptionStore(repository, calendar, reminder_scheduler)


@pytest.fixture
def make_sub():
    """Factory: make_sub(name="Netflix", price="15.99", ...)"""

    def _make(**overrides):
        fields = dict(
            name="Netflix",
            price=Decimal("15.99"),
            next_billing_date=date(2026, 3, 20),
        )
        fields.update(overrides)
        return Subscription(**fields)

    return _make

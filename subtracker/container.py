"""
Explicit wiring of the application objects.

build_container() is the only place where settings are turned into engines,
stores and services; create_app() and run_sweeps.py both go through it.
"""
from dataclasses import dataclass

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.engine import Engine

from subtracker.application.reminder_delivery import APSchedulerReminderBackend, make_telegram_sender
from subtracker.application.reminders import ReminderActionHandler, ReminderBackend, ReminderScheduler
from subtracker.application.scheduler import build_scheduler
from subtracker.application.subscriptions import SubscriptionStore
from subtracker.config import Settings
from subtracker.domain.calendar_math import CalendarMath
from subtracker.infrastructure.db.session import build_engine, build_session_factory, create_schema
from subtracker.infrastructure.storage.kv_store import SqlKeyValueStore
from subtracker.infrastructure.storage.repository import SubscriptionRepository


@dataclass(slots=True)
class Container:
    """Dependency registry shared across the application lifecycle."""

    settings: Settings
    calendar: CalendarMath
    primary_engine: Engine
    mirror_engine: Engine
    scheduler: BackgroundScheduler
    reminders: ReminderScheduler
    store: SubscriptionStore
    action_handler: ReminderActionHandler


def build_container(
    settings: Settings,
    calendar: CalendarMath | None = None,
    backend: ReminderBackend | None = None,
) -> Container:
    """
    Args:
        settings: application settings
        calendar: clock override (tests pin "now")
        backend: reminder backend override; defaults to APScheduler + Telegram
    """
    calendar = calendar or CalendarMath(settings.TIMEZONE)

    primary_engine = build_engine(settings.DATABASE_URL)
    mirror_engine = build_engine(settings.MIRROR_DATABASE_URL)
    # The mirror is local-only and never migrated by alembic
    create_schema(mirror_engine)
    if primary_engine.dialect.name == "sqlite":
        create_schema(primary_engine)

    primary = SqlKeyValueStore(build_session_factory(primary_engine), settings.STORAGE_NAMESPACE)
    mirror = SqlKeyValueStore(build_session_factory(mirror_engine), settings.STORAGE_NAMESPACE)

    scheduler = build_scheduler(settings)
    if backend is None:
        backend = APSchedulerReminderBackend(scheduler, make_telegram_sender(settings))

    reminders = ReminderScheduler(
        backend,
        calendar,
        state_store=mirror,
        lead_days=settings.REMINDER_LEAD_DAYS,
        deep_link_scheme=settings.DEEP_LINK_SCHEME,
        snooze_hours=settings.SNOOZE_HOURS,
        currency=settings.CURRENCY,
    )
    store = SubscriptionStore(SubscriptionRepository(primary, mirror), calendar, reminders)

    return Container(
        settings=settings,
        calendar=calendar,
        primary_engine=primary_engine,
        mirror_engine=mirror_engine,
        scheduler=scheduler,
        reminders=reminders,
        store=store,
        action_handler=ReminderActionHandler(store, reminders),
    )

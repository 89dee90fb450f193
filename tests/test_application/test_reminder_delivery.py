"""Tests for APScheduler-backed reminder delivery and Telegram sending."""
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock, patch
from uuid import uuid4

import pytest
import requests
from apscheduler.schedulers.background import BackgroundScheduler

from subtracker.application.reminder_delivery import (
    APSchedulerReminderBackend,
    format_telegram_text,
    make_telegram_sender,
)
from subtracker.application.reminders import Reminder, ReminderScheduler
from subtracker.application.scheduler import ROLLOVER_JOB_ID, SWEEP_JOB_ID, run_sweeps, start_scheduler
from subtracker.application.subscriptions import SubscriptionStore
from subtracker.config import Settings


def _reminder(identifier: str) -> Reminder:
    return Reminder(
        identifier=identifier,
        subscription_id=uuid4(),
        fire_at=datetime.now(timezone.utc) + timedelta(days=1),
        payload={"title": "t", "subscriptionName": "Netflix <HD>", "body": "b"},
    )


@pytest.fixture
def aps():
    """Scheduler that is never started: jobs stay pending"""
    return BackgroundScheduler(timezone="UTC")


def _settings(**overrides) -> Settings:
    fields = dict(
        DATABASE_URL="sqlite://",
        MIRROR_DATABASE_URL="sqlite://",
        TELEGRAM_BOT_TOKEN="token",
        TELEGRAM_CHAT_ID="42",
        TIMEZONE="UTC",
    )
    fields.update(overrides)
    return Settings(**fields)


class TestAPSchedulerBackend:
    def test_register_and_cancel_only_reminder_jobs(self, aps):
        aps.add_job(lambda: None, "interval", minutes=5, id="billing_sweep")
        backend = APSchedulerReminderBackend(aps, deliver=Mock())

        backend.register(_reminder("subscription_a_1days"))
        backend.register(_reminder("subscription_b_1days"))
        assert sorted(backend.scheduled_ids()) == ["subscription_a_1days", "subscription_b_1days"]

        backend.cancel_all()
        assert backend.scheduled_ids() == []
        assert aps.get_job("billing_sweep") is not None


class TestTelegramSender:
    def test_not_configured_skips(self):
        send = make_telegram_sender(_settings(TELEGRAM_BOT_TOKEN=""))
        with patch("subtracker.application.reminder_delivery.requests.post") as post:
            assert send({"subscriptionId": "x"}) is False
        post.assert_not_called()

    def test_sends_with_timeout(self):
        send = make_telegram_sender(_settings(REMINDER_DELIVERY_TIMEOUT=3))
        with patch("subtracker.application.reminder_delivery.requests.post") as post:
            post.return_value.status_code = 200
            assert send({"title": "Hi"}) is True
        kwargs = post.call_args.kwargs
        assert kwargs["timeout"] == 3
        assert kwargs["json"]["chat_id"] == "42"

    def test_network_error_fails_open(self):
        send = make_telegram_sender(_settings())
        with patch("subtracker.application.reminder_delivery.requests.post",
                   side_effect=requests.ConnectionError("down")):
            assert send({"title": "Hi"}) is False

    def test_http_error(self):
        send = make_telegram_sender(_settings())
        with patch("subtracker.application.reminder_delivery.requests.post") as post:
            post.return_value.status_code = 500
            assert send({"title": "Hi"}) is False

    def test_text_is_escaped(self):
        text = format_telegram_text({"title": "t", "subscriptionName": "Netflix <HD>"})
        assert "Netflix &lt;HD&gt;" in text


class TestSweepJobs:
    def test_start_registers_sweeps(self, aps):
        store = Mock()
        with patch.object(aps, "start") as start:
            start_scheduler(aps, store, _settings(SWEEP_INTERVAL_MINUTES=15))
        start.assert_called_once()
        assert aps.get_job(SWEEP_JOB_ID) is not None
        assert aps.get_job(ROLLOVER_JOB_ID) is not None

    def test_run_sweeps_swallows_errors(self):
        store = Mock()
        store.refresh.side_effect = RuntimeError("boom")
        run_sweeps(store)
        store.refresh.assert_called_once()

    def test_sweep_without_changes_keeps_snoozed_job(self, aps, repository, calendar, mirror_kv, make_sub):
        backend = APSchedulerReminderBackend(aps, deliver=Mock())
        reminders = ReminderScheduler(backend, calendar, state_store=mirror_kv)
        store = SubscriptionStore(repository, calendar, reminders)
        sub = store.add(make_sub(next_billing_date=date(2026, 3, 25)))
        reminders.snooze(reminders.registered[0].payload)

        expected = [f"subscription_{sub.id}_1days", f"subscription_{sub.id}_snoozed"]
        assert sorted(backend.scheduled_ids()) == expected

        run_sweeps(store)
        assert sorted(backend.scheduled_ids()) == expected

        store.update(store.get(sub.id))
        assert sorted(backend.scheduled_ids()) == expected

"""
Reminder delivery: APScheduler one-shot jobs that send the payload to Telegram.

Every Reminder becomes a DateTrigger job with id "reminder:{identifier}".
cancel_all() removes only those jobs, so the sweep jobs sharing the scheduler
are left alone. Delivery never raises: failures are logged and dropped.
"""
import html
import logging
from typing import Callable

import requests
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger

from subtracker.application.reminders import Reminder
from subtracker.config import Settings

logger = logging.getLogger(__name__)

JOB_PREFIX = "reminder:"


def job_id(reminder: Reminder) -> str:
    return f"{JOB_PREFIX}{reminder.identifier}"


class APSchedulerReminderBackend:
    def __init__(self, scheduler: BaseScheduler, deliver: Callable[[dict], bool]):
        self.scheduler = scheduler
        self.deliver = deliver

    def register(self, reminder: Reminder) -> None:
        self.scheduler.add_job(
            self.deliver,
            DateTrigger(run_date=reminder.fire_at),
            args=[reminder.payload],
            id=job_id(reminder),
            replace_existing=True,
            misfire_grace_time=3600,
        )

    def cancel_all(self) -> None:
        for job in self.scheduler.get_jobs():
            if job.id.startswith(JOB_PREFIX):
                self.scheduler.remove_job(job.id)

    def scheduled_ids(self) -> list[str]:
        return [
            job.id[len(JOB_PREFIX):]
            for job in self.scheduler.get_jobs()
            if job.id.startswith(JOB_PREFIX)
        ]


def format_telegram_text(payload: dict) -> str:
    title = payload.get("title", "")
    name = payload.get("subscriptionName", "")
    body = payload.get("body", "")
    lines = [f"<b>{html.escape(title)}</b>"]
    if name:
        lines.append(f"«{html.escape(name)}»")
    if body:
        lines.append("")
        lines.append(html.escape(body))
    link = payload.get("deepLinkURL")
    if link:
        lines.append("")
        lines.append(link)
    return "\n".join(lines)


def make_telegram_sender(settings: Settings) -> Callable[[dict], bool]:
    """Build the job callable. Returns True on HTTP 200."""

    def send(payload: dict) -> bool:
        if not settings.TELEGRAM_BOT_TOKEN or not settings.TELEGRAM_CHAT_ID:
            logger.warning(
                "Telegram delivery not configured, skipping reminder for %s",
                payload.get("subscriptionId"),
            )
            return False
        try:
            resp = requests.post(
                f"https://api.telegram.org/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage",
                json={
                    "chat_id": settings.TELEGRAM_CHAT_ID,
                    "text": format_telegram_text(payload),
                    "parse_mode": "HTML",
                },
                timeout=settings.REMINDER_DELIVERY_TIMEOUT,
            )
        except requests.RequestException:
            logger.exception("Telegram send failed for subscription %s", payload.get("subscriptionId"))
            return False
        if resp.status_code != 200:
            logger.error("Telegram send failed (HTTP %d)", resp.status_code)
            return False
        return True

    return send

"""
Reminder scheduling: turns active subscriptions into point-in-time reminders.

For every active subscription and every lead time (default: 1 day before
next_billing_date) one reminder fires at the subscription's reminder_time.
Past trigger moments are skipped.

On every store change the whole set is cancelled and registered again; the
set is small, so there is no diffing. Snoozed reminders that have not fired
yet are registered again after the replacement.

The renewal sweep advances next_billing_date a day before it is due, which
would move the 1-day reminder into the next period before it fires. The
store reports the due date of every period the sweep closes; while a lead
time trigger for that date is still ahead, it is used instead of the next
period's one. Closed periods are kept in the key-value store.

Reminder actions (mark paid / view details / snooze) come back with the
payload. Duplicate deliveries of the same action are suppressed through one
PendingReminderAction record kept in the key-value store.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from subtracker.application.deep_links import build_subscription_link
from subtracker.domain.calendar_math import CalendarMath
from subtracker.domain.subscription import (
    BILLING_CYCLE_LABELS,
    CATEGORY_DISPLAY,
    Subscription,
)
from subtracker.infrastructure.storage.kv_store import KeyValueStore
from subtracker.utils.money import format_money

logger = logging.getLogger(__name__)

MARK_AS_PAID_ACTION = "MARK_AS_PAID"
VIEW_DETAILS_ACTION = "VIEW_DETAILS"
SNOOZE_ACTION = "SNOOZE"
REMINDER_ACTIONS = [MARK_AS_PAID_ACTION, VIEW_DETAILS_ACTION, SNOOZE_ACTION]

REMINDER_CATEGORY = "SUBSCRIPTION_RENEWAL"

PENDING_ACTION_KEY = "PendingReminderAction"
DUPLICATE_WINDOW = timedelta(seconds=2)
PENDING_ACTION_TTL = timedelta(hours=2)

CLOSED_PERIODS_KEY = "ClosedBillingPeriods"


@dataclass(frozen=True)
class Reminder:
    identifier: str
    subscription_id: UUID
    fire_at: datetime
    payload: dict


class ReminderBackend(Protocol):
    """Platform delivery mechanism (APScheduler jobs in production)."""

    def register(self, reminder: Reminder) -> None: ...

    def cancel_all(self) -> None: ...


@dataclass(frozen=True)
class PendingReminderAction:
    action_id: int
    action: str
    subscription_id: str
    created_at: datetime
    consumed: bool = False

    def to_dict(self) -> dict:
        return {
            "action_id": self.action_id,
            "action": self.action,
            "subscription_id": self.subscription_id,
            "created_at": self.created_at.isoformat(),
            "consumed": self.consumed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingReminderAction":
        return cls(
            action_id=int(data["action_id"]),
            action=data["action"],
            subscription_id=data["subscription_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            consumed=bool(data.get("consumed", False)),
        )


def reminder_identifier(sub_id: UUID, lead_days: int) -> str:
    return f"subscription_{sub_id}_{lead_days}days"


def snooze_identifier(sub_id: UUID | str) -> str:
    return f"subscription_{sub_id}_snoozed"


def _days_word(n: int) -> str:
    return "день" if n == 1 else "дней"


class ReminderScheduler:
    def __init__(
        self,
        backend: ReminderBackend,
        calendar: CalendarMath,
        state_store: KeyValueStore | None = None,
        lead_days: Iterable[int] = (1,),
        deep_link_scheme: str = "subtracker",
        snooze_hours: int = 24,
        currency: str = "USD",
    ):
        self.backend = backend
        self.calendar = calendar
        self.state_store = state_store
        self.lead_days = sorted(set(lead_days))
        self.deep_link_scheme = deep_link_scheme
        self.snooze_hours = snooze_hours
        self.currency = currency
        self.registered: list[Reminder] = []
        self._snoozed: dict[str, Reminder] = {}
        self._pending_memory: dict | None = None
        self._closed_memory: dict | None = None

    # ── Derivation ────────────────────────────────────────────────────────

    def _payload(self, sub: Subscription, lead: int, badge: int, due_date: date) -> dict:
        price_text = format_money(sub.price, self.currency, decimals=2)
        cycle_text = BILLING_CYCLE_LABELS[sub.billing_cycle].lower()
        category_label = CATEGORY_DISPLAY[sub.category].label
        date_text = due_date.strftime("%d.%m.%Y")
        return {
            "subscriptionId": str(sub.id),
            "subscriptionName": sub.name,
            "subscriptionPrice": str(sub.price),
            "nextBillingDate": due_date.isoformat(),
            "title": "💳 Напоминание о подписке",
            "subtitle": sub.name,
            "body": (
                f"💰 Стоимость: {price_text} ({cycle_text})\n"
                f"📅 Следующая дата: {date_text}\n"
                f"📊 Категория: {category_label}\n\n"
                f"Оплата через {lead} {_days_word(lead)}."
            ),
            "deepLinkURL": build_subscription_link(sub.id, self.deep_link_scheme),
            "category": REMINDER_CATEGORY,
            "actions": list(REMINDER_ACTIONS),
            "badge": badge,
        }

    def _trigger(self, sub: Subscription, due_date: date, lead: int) -> datetime:
        return self.calendar.combine(due_date - timedelta(days=lead), sub.reminder_time)

    def build_reminders(
        self,
        subscriptions: Iterable[Subscription],
        closed_periods: dict[UUID, date] | None = None,
    ) -> list[Reminder]:
        """Pure: reminders that should be registered right now.

        Per lead time the earliest future trigger wins: the one for a period
        the renewal sweep just closed (closed_periods), else the one for
        next_billing_date.
        """
        closed_periods = closed_periods or {}
        now = self.calendar.now()
        reminders: list[Reminder] = []
        active = [s for s in subscriptions if s.is_active]
        for badge, sub in enumerate(active, start=1):
            due_dates = [sub.next_billing_date]
            if sub.id in closed_periods:
                due_dates.insert(0, closed_periods[sub.id])
            for lead in self.lead_days:
                for due_date in due_dates:
                    fire_at = self._trigger(sub, due_date, lead)
                    if fire_at <= now:
                        continue
                    reminders.append(Reminder(
                        identifier=reminder_identifier(sub.id, lead),
                        subscription_id=sub.id,
                        fire_at=fire_at,
                        payload=self._payload(sub, lead, badge, due_date),
                    ))
                    break
        return reminders

    # ── Registration ──────────────────────────────────────────────────────

    def refresh(self, subscriptions: Iterable[Subscription]) -> list[Reminder]:
        """Cancel everything registered and register the current set.

        Snoozed reminders still ahead are registered again. Backend failures
        are logged; they never reach the caller.
        """
        subscriptions = list(subscriptions)
        closed = self._prune_closed_periods(subscriptions)

        try:
            self.backend.cancel_all()
        except Exception:
            logger.exception("Failed to cancel registered reminders")

        registered: list[Reminder] = []
        for reminder in self.build_reminders(subscriptions, closed) + self._live_snoozes(subscriptions):
            try:
                self.backend.register(reminder)
                registered.append(reminder)
            except Exception:
                logger.exception("Failed to register reminder %s", reminder.identifier)

        self.registered = registered
        logger.info("Registered %d reminder(s)", len(registered))
        return registered

    def _live_snoozes(self, subscriptions: list[Subscription]) -> list[Reminder]:
        """Snoozed reminders that have not fired and still belong to an active subscription."""
        now = self.calendar.now()
        active_ids = {s.id for s in subscriptions if s.is_active}
        self._snoozed = {
            identifier: reminder
            for identifier, reminder in self._snoozed.items()
            if reminder.fire_at > now and reminder.subscription_id in active_ids
        }
        return list(self._snoozed.values())

    def snooze(self, payload: dict) -> Reminder | None:
        """Re-deliver a reminder snooze_hours from now. The subscription is untouched."""
        try:
            sub_id = UUID(str(payload.get("subscriptionId")))
        except ValueError:
            return None

        snoozed_payload = dict(payload)
        snoozed_payload["title"] = "🔔 Повторное напоминание"
        name = payload.get("subscriptionName")
        price = payload.get("subscriptionPrice")
        subject = f"подписке «{name}»" if name else "вашей подписке"
        snoozed_payload["body"] = f"Напоминаем о {subject}"
        if price is not None:
            snoozed_payload["body"] += f" стоимостью {format_money(price, self.currency, decimals=2)}"
        snoozed_payload["badge"] = 1

        reminder = Reminder(
            identifier=snooze_identifier(sub_id),
            subscription_id=sub_id,
            fire_at=self.calendar.now() + timedelta(hours=self.snooze_hours),
            payload=snoozed_payload,
        )
        try:
            self.backend.register(reminder)
        except Exception:
            logger.exception("Failed to register snoozed reminder for %s", sub_id)
            return None
        self._snoozed[reminder.identifier] = reminder
        return reminder

    # ── Closed billing periods ────────────────────────────────────────────

    def _read_closed(self) -> dict[UUID, date]:
        data = self._closed_memory
        if self.state_store is not None:
            try:
                data = self.state_store.get(CLOSED_PERIODS_KEY)
            except SQLAlchemyError:
                logger.exception("Failed to read closed billing periods")
                data = self._closed_memory
        try:
            return {UUID(k): date.fromisoformat(v) for k, v in (data or {}).items()}
        except (AttributeError, ValueError, TypeError):
            logger.warning("Discarding malformed closed billing periods: %r", data)
            return {}

    def _write_closed(self, closed: dict[UUID, date]) -> None:
        data = {str(k): v.isoformat() for k, v in closed.items()}
        self._closed_memory = data or None
        if self.state_store is None:
            return
        try:
            if data:
                self.state_store.set(CLOSED_PERIODS_KEY, data)
            else:
                self.state_store.delete(CLOSED_PERIODS_KEY)
        except SQLAlchemyError:
            logger.exception("Failed to save closed billing periods")

    def note_closed_periods(self, closed: dict[UUID, date]) -> None:
        """Remember the due dates of periods the renewal sweep just closed."""
        if not closed:
            return
        merged = self._read_closed()
        merged.update(closed)
        self._write_closed(merged)

    def forget_closed_period(self, sub_id: UUID | None = None) -> None:
        """Drop the closed period of one subscription (None: of all of them)."""
        closed = self._read_closed()
        if sub_id is None:
            remaining = {}
        else:
            remaining = {k: v for k, v in closed.items() if k != sub_id}
        if remaining != closed:
            self._write_closed(remaining)

    def _prune_closed_periods(self, subscriptions: list[Subscription]) -> dict[UUID, date]:
        """Drop closed periods whose reminders are all behind us."""
        closed = self._read_closed()
        if not closed:
            return closed
        now = self.calendar.now()
        by_id = {s.id: s for s in subscriptions if s.is_active}
        kept = {
            sub_id: due_date
            for sub_id, due_date in closed.items()
            if sub_id in by_id
            and any(self._trigger(by_id[sub_id], due_date, lead) > now for lead in self.lead_days)
        }
        if kept != closed:
            self._write_closed(kept)
        return kept

    # ── Pending action record ─────────────────────────────────────────────

    def _read_pending(self) -> PendingReminderAction | None:
        data = self._pending_memory
        if self.state_store is not None:
            try:
                data = self.state_store.get(PENDING_ACTION_KEY)
            except SQLAlchemyError:
                logger.exception("Failed to read pending reminder action")
                data = self._pending_memory
        if not data:
            return None
        try:
            return PendingReminderAction.from_dict(data)
        except (KeyError, ValueError, TypeError):
            logger.warning("Discarding malformed pending reminder action: %r", data)
            return None

    def _write_pending(self, record: PendingReminderAction) -> None:
        self._pending_memory = record.to_dict()
        if self.state_store is not None:
            try:
                self.state_store.set(PENDING_ACTION_KEY, record.to_dict())
            except SQLAlchemyError:
                logger.exception("Failed to save pending reminder action")

    def record_action(
        self, action: str, subscription_id: UUID, pending: bool = False,
    ) -> PendingReminderAction | None:
        """Record an incoming action. Returns None if it is a recent duplicate."""
        now = self.calendar.now()
        previous = self._read_pending()
        if (
            previous is not None
            and previous.action == action
            and previous.subscription_id == str(subscription_id)
            and now - previous.created_at < DUPLICATE_WINDOW
        ):
            logger.info("Duplicate %s action for %s suppressed", action, subscription_id)
            return None

        record = PendingReminderAction(
            action_id=(previous.action_id if previous else 0) + 1,
            action=action,
            subscription_id=str(subscription_id),
            created_at=now,
            consumed=not pending,
        )
        self._write_pending(record)
        return record

    def take_pending_action(self) -> PendingReminderAction | None:
        """Return the pending navigation action once, unless it has expired."""
        record = self._read_pending()
        if record is None or record.consumed:
            return None
        consumed = PendingReminderAction(
            action_id=record.action_id,
            action=record.action,
            subscription_id=record.subscription_id,
            created_at=record.created_at,
            consumed=True,
        )
        self._write_pending(consumed)
        if self.calendar.now() - record.created_at > PENDING_ACTION_TTL:
            logger.info("Pending %s action expired, dropping", record.action)
            return None
        return record


@dataclass(frozen=True)
class ActionOutcome:
    action: str
    subscription_id: UUID | None
    handled: bool
    deep_link: str | None = None
    subscription: Subscription | None = None
    reminder: Reminder | None = None


class ReminderActionHandler:
    """Routes reminder actions back to the store / scheduler."""

    def __init__(self, store, scheduler: ReminderScheduler):
        self.store = store
        self.scheduler = scheduler

    def handle(self, action: str, payload: dict[str, Any]) -> ActionOutcome:
        try:
            sub_id = UUID(str(payload.get("subscriptionId")))
        except ValueError:
            logger.info("Reminder action %s without a valid subscriptionId ignored", action)
            return ActionOutcome(action, None, handled=False)

        if action not in REMINDER_ACTIONS:
            logger.info("Unknown reminder action %s ignored", action)
            return ActionOutcome(action, sub_id, handled=False)

        if self.store.get(sub_id) is None:
            logger.info("Reminder action %s for unknown subscription %s ignored", action, sub_id)
            return ActionOutcome(action, sub_id, handled=False)

        record = self.scheduler.record_action(
            action, sub_id, pending=(action == VIEW_DETAILS_ACTION),
        )
        if record is None:
            return ActionOutcome(action, sub_id, handled=False)

        if action == MARK_AS_PAID_ACTION:
            sub = self.store.mark_paid(sub_id)
            return ActionOutcome(action, sub_id, handled=sub is not None, subscription=sub)

        if action == VIEW_DETAILS_ACTION:
            link = build_subscription_link(sub_id, self.scheduler.deep_link_scheme)
            return ActionOutcome(action, sub_id, handled=True, deep_link=link)

        reminder = self.scheduler.snooze(payload)
        return ActionOutcome(action, sub_id, handled=reminder is not None, reminder=reminder)

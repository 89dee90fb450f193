"""
SubscriptionStore: the single mutable authority over the subscription list.

Mutations are serialized by a lock, persist the full collection afterwards,
emit a StoreChange to listeners and re-derive reminders. A mutation that
references an unknown id is a no-op and returns None / False.

Queries return copies; callers edit a copy and send it back through update().
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable
from uuid import UUID

from subtracker.domain import billing
from subtracker.domain.calendar_math import CalendarMath
from subtracker.domain.subscription import (
    CATEGORIES,
    REPETITION_DISABLED,
    Subscription,
    SubscriptionValidationError,
)
from subtracker.infrastructure.storage.repository import SOURCE_MIRROR, SubscriptionRepository

logger = logging.getLogger(__name__)

UPCOMING_WINDOW_DAYS = 7

CHANGE_ADDED = "added"
CHANGE_UPDATED = "updated"
CHANGE_DELETED = "deleted"
CHANGE_CLEARED = "cleared"
CHANGE_LOADED = "loaded"
CHANGE_REFRESHED = "refreshed"


@dataclass(frozen=True)
class StoreChange:
    kind: str
    subscription_id: UUID | None
    subscriptions: tuple[Subscription, ...]


@dataclass
class SweepResult:
    renewed: list[UUID] = field(default_factory=list)
    reset: list[UUID] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.renewed or self.reset)


@dataclass(frozen=True)
class CategoryTotals:
    category: str
    count: int
    monthly: Decimal
    current_month: Decimal
    unpaid_monthly: Decimal
    unpaid_current_month: Decimal


@dataclass(frozen=True)
class SpendingSummary:
    active_count: int
    total_monthly: Decimal
    total_yearly: Decimal
    total_current_month: Decimal
    total_current_month_unpaid: Decimal
    total_unpaid_monthly: Decimal
    categories: list[CategoryTotals]


def _sum(values: Iterable[Decimal]) -> Decimal:
    return sum(values, Decimal("0"))


class SubscriptionStore:
    def __init__(
        self,
        repository: SubscriptionRepository,
        calendar: CalendarMath,
        reminders=None,
    ):
        """
        Args:
            repository: load/save contract for the collection
            calendar: clock used by every sweep and query
            reminders: ReminderScheduler (optional) refreshed after each mutation
        """
        self.repository = repository
        self.calendar = calendar
        self.reminders = reminders
        self._subscriptions: list[Subscription] = []
        self._listeners: list[Callable[[StoreChange], None]] = []
        self._lock = threading.RLock()

    # ── Events ────────────────────────────────────────────────────────────

    def subscribe(self, listener: Callable[[StoreChange], None]) -> Callable[[], None]:
        """Register a change listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: str, subscription_id: UUID | None) -> StoreChange:
        change = StoreChange(kind, subscription_id, tuple(self.all()))
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Store listener failed for %s change", kind)
        return change

    def _refresh_reminders(self) -> None:
        if self.reminders is None:
            return
        try:
            self.reminders.refresh(self.active())
        except Exception:
            logger.exception("Reminder refresh failed")

    def _commit(self, kind: str, subscription_id: UUID | None) -> None:
        self.repository.save(self._subscriptions)
        self._emit(kind, subscription_id)
        self._refresh_reminders()

    def _find(self, sub_id: UUID) -> Subscription | None:
        for sub in self._subscriptions:
            if sub.id == sub_id:
                return sub
        return None

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def load(self) -> SweepResult:
        """Load from storage, re-persist if needed, then run both sweeps."""
        with self._lock:
            result = self.repository.load()
            self._subscriptions = result.subscriptions
            if result.source == SOURCE_MIRROR or result.migrated:
                self.repository.save(self._subscriptions)
            self._emit(CHANGE_LOADED, None)
            result = self.refresh()
            if not result.changed:
                self._refresh_reminders()
            return result

    def refresh(self) -> SweepResult:
        """Auto-renewal sweep + payment-reset sweep. Idempotent for a fixed clock.

        Reminders are re-derived only when a sweep changed something, so
        periodic sweeps leave registered and snoozed reminders alone.
        """
        with self._lock:
            closed: dict[UUID, date] = {}
            result = SweepResult(
                renewed=billing.process_auto_renewals(
                    self._subscriptions, self.calendar, closed_periods=closed,
                ),
                reset=billing.process_payment_resets(self._subscriptions, self.calendar),
            )
            if result.changed:
                self.repository.save(self._subscriptions)
                self._emit(CHANGE_REFRESHED, None)
                if closed and self.reminders is not None:
                    self.reminders.note_closed_periods(closed)
                self._refresh_reminders()
            return result

    def _forget_closed_period(self, sub_id: UUID | None) -> None:
        if self.reminders is not None:
            self.reminders.forget_closed_period(sub_id)

    def _with_defaults(self, subscription: Subscription) -> Subscription:
        if subscription.next_billing_date is None:
            subscription = subscription.copy()
            subscription.next_billing_date = self.calendar.today()
        return subscription

    # ── Mutations ─────────────────────────────────────────────────────────

    def add(self, subscription: Subscription) -> Subscription:
        subscription = self._with_defaults(subscription)
        subscription.validate()
        with self._lock:
            if self._find(subscription.id) is not None:
                raise SubscriptionValidationError("Подписка с таким id уже существует")
            self._subscriptions.append(subscription.copy())
            self._commit(CHANGE_ADDED, subscription.id)
            return subscription.copy()

    def update(self, subscription: Subscription) -> Subscription | None:
        subscription = self._with_defaults(subscription)
        subscription.validate()
        with self._lock:
            for i, existing in enumerate(self._subscriptions):
                if existing.id == subscription.id:
                    self._subscriptions[i] = subscription.copy()
                    self._commit(CHANGE_UPDATED, subscription.id)
                    return subscription.copy()
            logger.info("update: subscription %s not found", subscription.id)
            return None

    def delete(self, sub_id: UUID) -> bool:
        with self._lock:
            sub = self._find(sub_id)
            if sub is None:
                logger.info("delete: subscription %s not found", sub_id)
                return False
            self._subscriptions.remove(sub)
            self._forget_closed_period(sub_id)
            self._commit(CHANGE_DELETED, sub_id)
            return True

    def _apply(
        self,
        sub_id: UUID,
        action: Callable[[Subscription], None],
        op: str,
        closes_period: bool = False,
    ) -> Subscription | None:
        with self._lock:
            sub = self._find(sub_id)
            if sub is None:
                logger.info("%s: subscription %s not found", op, sub_id)
                return None
            action(sub)
            # an explicit payment supersedes a period the renewal sweep closed
            if closes_period:
                self._forget_closed_period(sub_id)
            self._commit(CHANGE_UPDATED, sub_id)
            return sub.copy()

    def toggle_active(self, sub_id: UUID) -> Subscription | None:
        def _toggle(sub: Subscription) -> None:
            sub.is_active = not sub.is_active

        return self._apply(sub_id, _toggle, "toggle_active")

    def mark_paid(self, sub_id: UUID) -> Subscription | None:
        return self._apply(sub_id, billing.mark_as_paid, "mark_paid", closes_period=True)

    def toggle_payment(self, sub_id: UUID) -> Subscription | None:
        return self._apply(sub_id, billing.toggle_payment_status, "toggle_payment", closes_period=True)

    def clear_all(self) -> None:
        with self._lock:
            self._subscriptions = []
            self._forget_closed_period(None)
            self._commit(CHANGE_CLEARED, None)

    # ── Queries ───────────────────────────────────────────────────────────

    def all(self) -> list[Subscription]:
        return [s.copy() for s in self._subscriptions]

    def get(self, sub_id: UUID) -> Subscription | None:
        sub = self._find(sub_id)
        return sub.copy() if sub else None

    def active(self) -> list[Subscription]:
        return [s.copy() for s in self._subscriptions if s.is_active]

    def upcoming(self, days: int = UPCOMING_WINDOW_DAYS) -> list[Subscription]:
        cal = self.calendar
        subs = [
            s for s in self.active()
            if not s.is_paid_for_current_month
            and not s.is_overdue(cal)
            and s.days_until_next_billing(cal) <= days
        ]
        return sorted(subs, key=lambda s: s.next_billing_date)

    def overdue(self) -> list[Subscription]:
        return [s for s in self.active() if s.is_overdue(self.calendar)]

    def auto_renewing(self) -> list[Subscription]:
        return [s for s in self.active() if s.repetition_type != REPETITION_DISABLED]

    def without_auto_renewal(self) -> list[Subscription]:
        return [s for s in self.active() if s.repetition_type == REPETITION_DISABLED]

    def by_category(self, category: str) -> list[Subscription]:
        return [s for s in self.active() if s.category == category]

    def total_monthly(self) -> Decimal:
        return _sum(s.monthly_price for s in self.active())

    def total_yearly(self) -> Decimal:
        return _sum(s.yearly_price for s in self.active())

    def total_current_month(self) -> Decimal:
        return _sum(s.current_month_price(self.calendar) for s in self.active())

    def total_current_month_unpaid(self) -> Decimal:
        return _sum(s.unpaid_current_month_price(self.calendar) for s in self.active())

    def total_unpaid_monthly(self) -> Decimal:
        return _sum(s.unpaid_monthly_price for s in self.active())

    def category_totals(self, category: str) -> CategoryTotals:
        subs = self.by_category(category)
        cal = self.calendar
        return CategoryTotals(
            category=category,
            count=len(subs),
            monthly=_sum(s.monthly_price for s in subs),
            current_month=_sum(s.current_month_price(cal) for s in subs),
            unpaid_monthly=_sum(s.unpaid_monthly_price for s in subs),
            unpaid_current_month=_sum(s.unpaid_current_month_price(cal) for s in subs),
        )

    def category_breakdown(self) -> list[CategoryTotals]:
        """Totals per category, only categories with active subscriptions."""
        totals = [self.category_totals(c) for c in CATEGORIES]
        return [t for t in totals if t.count > 0]

    def summary(self) -> SpendingSummary:
        return SpendingSummary(
            active_count=len(self.active()),
            total_monthly=self.total_monthly(),
            total_yearly=self.total_yearly(),
            total_current_month=self.total_current_month(),
            total_current_month_unpaid=self.total_current_month_unpaid(),
            total_unpaid_monthly=self.total_unpaid_monthly(),
            categories=self.category_breakdown(),
        )

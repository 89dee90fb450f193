"""
Subscription domain entity.

A subscription is a plain value: billing configuration + derived read-only
computations. State transitions (renewal, payment) live in domain/billing.py.

Billing cycle (WEEKLY/MONTHLY/QUARTERLY/YEARLY) drives price normalization.
Repetition type (DISABLED/MONTHLY/YEARLY) is the independent auto-renewal
policy: it decides whether and by how much next_billing_date moves.
"""
from dataclasses import dataclass, field, replace
from datetime import date, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import NamedTuple
from uuid import UUID, uuid4

from subtracker.domain.calendar_math import (
    CalendarMath,
    add_months,
    days_between,
    is_same_month,
    last_day_of_month,
    last_day_of_previous_month,
    start_of_month,
)

# Billing cycles
BILLING_CYCLE_WEEKLY = "WEEKLY"
BILLING_CYCLE_MONTHLY = "MONTHLY"
BILLING_CYCLE_QUARTERLY = "QUARTERLY"
BILLING_CYCLE_YEARLY = "YEARLY"

BILLING_CYCLES = [
    BILLING_CYCLE_WEEKLY,
    BILLING_CYCLE_MONTHLY,
    BILLING_CYCLE_QUARTERLY,
    BILLING_CYCLE_YEARLY,
]

# Cycle length used to decide whether next_billing_date is "the current one"
BILLING_CYCLE_DAYS = {
    BILLING_CYCLE_WEEKLY: 7,
    BILLING_CYCLE_MONTHLY: 30,
    BILLING_CYCLE_QUARTERLY: 90,
    BILLING_CYCLE_YEARLY: 365,
}

BILLING_CYCLE_LABELS = {
    BILLING_CYCLE_WEEKLY: "Weekly",
    BILLING_CYCLE_MONTHLY: "Monthly",
    BILLING_CYCLE_QUARTERLY: "Quarterly",
    BILLING_CYCLE_YEARLY: "Yearly",
}

WEEKS_PER_MONTH = Decimal("4.33")

# Repetition (auto-renewal policy)
REPETITION_DISABLED = "DISABLED"
REPETITION_MONTHLY = "MONTHLY"
REPETITION_YEARLY = "YEARLY"

REPETITION_TYPES = [REPETITION_DISABLED, REPETITION_MONTHLY, REPETITION_YEARLY]

REPETITION_LABELS = {
    REPETITION_DISABLED: "No auto-renewal",
    REPETITION_MONTHLY: "Auto-renew monthly",
    REPETITION_YEARLY: "Auto-renew yearly",
}

# Categories (aggregation only)
CATEGORY_STREAMING = "STREAMING"
CATEGORY_MUSIC = "MUSIC"
CATEGORY_PRODUCTIVITY = "PRODUCTIVITY"
CATEGORY_FITNESS = "FITNESS"
CATEGORY_GAMING = "GAMING"
CATEGORY_NEWS = "NEWS"
CATEGORY_STORAGE = "STORAGE"
CATEGORY_COMMUNICATION = "COMMUNICATION"
CATEGORY_FINANCE = "FINANCE"
CATEGORY_OTHER = "OTHER"


class CategoryDisplay(NamedTuple):
    label: str
    icon: str
    color: str


CATEGORY_DISPLAY = {
    CATEGORY_STREAMING: CategoryDisplay("Streaming", "tv", "red"),
    CATEGORY_MUSIC: CategoryDisplay("Music", "music.note", "purple"),
    CATEGORY_PRODUCTIVITY: CategoryDisplay("Productivity", "briefcase", "blue"),
    CATEGORY_FITNESS: CategoryDisplay("Fitness", "figure.walk", "green"),
    CATEGORY_GAMING: CategoryDisplay("Gaming", "gamecontroller", "orange"),
    CATEGORY_NEWS: CategoryDisplay("News", "newspaper", "indigo"),
    CATEGORY_STORAGE: CategoryDisplay("Storage", "internaldrive", "gray"),
    CATEGORY_COMMUNICATION: CategoryDisplay("Communication", "message", "teal"),
    CATEGORY_FINANCE: CategoryDisplay("Finance", "creditcard", "mint"),
    CATEGORY_OTHER: CategoryDisplay("Other", "app", "brown"),
}

CATEGORIES = list(CATEGORY_DISPLAY)

DEFAULT_REMINDER_TIME = time(9, 0)
DEFAULT_COLOR = "blue"


class SubscriptionValidationError(ValueError):
    pass


@dataclass
class Subscription:
    """
    Subscription value object.

    id is immutable once the object exists; everything else is edited through
    SubscriptionStore.update() with a modified copy. next_billing_date may be
    left empty: the store fills in today's date in its own time zone.
    """
    id: UUID = field(default_factory=uuid4)
    name: str = ""
    price: Decimal = Decimal("0")
    billing_cycle: str = BILLING_CYCLE_MONTHLY
    category: str = CATEGORY_OTHER
    next_billing_date: date | None = None
    is_active: bool = True
    notes: str = ""
    color: str = DEFAULT_COLOR
    repetition_type: str = REPETITION_MONTHLY
    is_paid_for_current_month: bool = False
    reminder_time: time = DEFAULT_REMINDER_TIME

    def __post_init__(self):
        if not isinstance(self.price, Decimal):
            try:
                self.price = Decimal(str(self.price))
            except InvalidOperation as e:
                raise SubscriptionValidationError(f"Некорректная сумма: {self.price!r}") from e

    def __setattr__(self, name, value):
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("Subscription id is immutable")
        super().__setattr__(name, value)

    def copy(self) -> "Subscription":
        return replace(self)

    def validate(self) -> None:
        """Raise SubscriptionValidationError if the subscription breaks an invariant."""
        if not self.name or not self.name.strip():
            raise SubscriptionValidationError("Название не может быть пустым")
        if not self.price.is_finite():
            raise SubscriptionValidationError("Некорректная сумма")
        if self.price < 0:
            raise SubscriptionValidationError("Сумма не может быть отрицательной")
        if self.billing_cycle not in BILLING_CYCLES:
            raise SubscriptionValidationError(f"Неверный цикл оплаты: {self.billing_cycle}")
        if self.repetition_type not in REPETITION_TYPES:
            raise SubscriptionValidationError(f"Неверный тип продления: {self.repetition_type}")
        if self.category not in CATEGORY_DISPLAY:
            raise SubscriptionValidationError(f"Неверная категория: {self.category}")
        if self.next_billing_date is None:
            raise SubscriptionValidationError("Не указана дата следующего списания")

    # ── Prices ────────────────────────────────────────────────────────────

    @property
    def monthly_price(self) -> Decimal:
        if self.billing_cycle == BILLING_CYCLE_WEEKLY:
            return self.price * WEEKS_PER_MONTH
        if self.billing_cycle == BILLING_CYCLE_QUARTERLY:
            return self.price / 3
        if self.billing_cycle == BILLING_CYCLE_YEARLY:
            return self.price / 12
        return self.price

    @property
    def yearly_price(self) -> Decimal:
        return self.monthly_price * 12

    @property
    def unpaid_monthly_price(self) -> Decimal:
        return Decimal("0") if self.is_paid_for_current_month else self.monthly_price

    def is_due_this_month(self, cal: CalendarMath) -> bool:
        return is_same_month(self.next_billing_date, cal.today())

    def current_month_price(self, cal: CalendarMath) -> Decimal:
        """Amount attributable to the current calendar month.

        A yearly charge counts only in the month it is due, it is not spread
        across twelve months.
        """
        if self.billing_cycle == BILLING_CYCLE_YEARLY:
            return self.price if self.is_due_this_month(cal) else Decimal("0")
        return self.monthly_price

    def unpaid_current_month_price(self, cal: CalendarMath) -> Decimal:
        if self.is_paid_for_current_month:
            return Decimal("0")
        if not self.is_due_this_month(cal):
            return Decimal("0")
        if self.billing_cycle == BILLING_CYCLE_YEARLY:
            return self.price
        return self.monthly_price

    # ── Due dates ─────────────────────────────────────────────────────────

    def days_until_next_billing(self, cal: CalendarMath) -> int:
        return max(0, days_between(cal.today(), self.next_billing_date))

    def is_overdue(self, cal: CalendarMath) -> bool:
        return self.next_billing_date < cal.today()

    def days_until_renewal(self, cal: CalendarMath) -> int:
        if self.is_paid_for_current_month:
            return self.days_until_next_billing(cal)
        due = self.calculate_current_period_due_date(cal)
        return max(0, days_between(cal.today(), due))

    def calculate_current_period_due_date(self, cal: CalendarMath) -> date:
        """Due date of the period the user currently owes for.

        next_billing_date may already have rolled forward (auto-renewal), or
        may lie far in the past for a disabled subscription. In both cases the
        due date is projected from it onto the first occurrence >= today.
        """
        today = cal.today()
        due = self.next_billing_date
        if due >= today and days_between(today, due) <= BILLING_CYCLE_DAYS[self.billing_cycle]:
            return due

        if self.billing_cycle == BILLING_CYCLE_WEEKLY:
            offset = (due.weekday() - today.weekday()) % 7
            return today + timedelta(days=offset)

        if self.billing_cycle == BILLING_CYCLE_MONTHLY:
            candidate = today.replace(day=min(due.day, last_day_of_month(today.year, today.month)))
            if candidate >= today:
                return candidate
            following = add_months(start_of_month(today), 1)
            return following.replace(
                day=min(due.day, last_day_of_month(following.year, following.month))
            )

        if self.billing_cycle == BILLING_CYCLE_QUARTERLY:
            return add_months(today, 3)

        # YEARLY
        candidate = date(today.year, due.month, min(due.day, last_day_of_month(today.year, due.month)))
        if candidate >= today:
            return candidate
        year = today.year + 1
        return date(year, due.month, min(due.day, last_day_of_month(year, due.month)))

    def needs_payment_reset(self, cal: CalendarMath) -> bool:
        """Paid flag has outlived its period (due date in or before last month)."""
        return (
            self.is_paid_for_current_month
            and self.next_billing_date <= last_day_of_previous_month(cal.today())
        )

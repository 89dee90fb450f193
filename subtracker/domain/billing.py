"""
Billing engine: state transitions on a Subscription.

Functions here mutate the Subscription passed in; SubscriptionStore always
hands them its own authoritative instance, never a caller's copy.

State machine (auto-renewing):
    Unpaid-Due / Unpaid-Overdue / Paid-Current
        --(renewal sweep | mark_as_paid)--> Unpaid-Due (next period)

Disabled auto-renewal only moves between Unpaid and Paid on explicit commands.
"""
import logging
from datetime import date
from typing import Iterable
from uuid import UUID

from subtracker.domain.calendar_math import CalendarMath, add_months, add_years
from subtracker.domain.subscription import (
    Subscription,
    REPETITION_DISABLED,
    REPETITION_MONTHLY,
    REPETITION_YEARLY,
)

logger = logging.getLogger(__name__)


def next_cycle_date(sub: Subscription, from_date: date | None = None) -> date | None:
    """Date one repetition unit after from_date (default: next_billing_date).

    Returns None when repetition is disabled or the arithmetic fails.
    """
    base = from_date or sub.next_billing_date
    try:
        if sub.repetition_type == REPETITION_MONTHLY:
            return add_months(base, 1)
        if sub.repetition_type == REPETITION_YEARLY:
            return add_years(base, 1)
    except (ValueError, OverflowError):
        logger.warning("Cannot advance billing date %s for sub_id=%s", base, sub.id)
    return None


def advance_billing_date(sub: Subscription) -> bool:
    """Move next_billing_date forward by one repetition unit.

    No-op (returns False) for disabled repetition or failed arithmetic, the
    previous date is kept in both cases.
    """
    if sub.repetition_type == REPETITION_DISABLED:
        return False
    new_date = next_cycle_date(sub)
    if new_date is None:
        return False
    sub.next_billing_date = new_date
    return True


def reset_payment_status(sub: Subscription) -> bool:
    changed = sub.is_paid_for_current_month
    sub.is_paid_for_current_month = False
    return changed


def mark_as_paid(sub: Subscription) -> None:
    """Pay the current period; auto-renewing subscriptions open the next one unpaid."""
    sub.is_paid_for_current_month = True
    if sub.repetition_type != REPETITION_DISABLED:
        if advance_billing_date(sub):
            reset_payment_status(sub)


def toggle_payment_status(sub: Subscription) -> None:
    """Paid -> unpaid; unpaid -> mark_as_paid (with its renewal side-effect).

    Not symmetric for auto-renewing subscriptions: two calls in a row renew
    twice, because the first call already leaves the subscription unpaid.
    """
    if sub.is_paid_for_current_month:
        reset_payment_status(sub)
    else:
        mark_as_paid(sub)


def needs_auto_renewal(sub: Subscription, cal: CalendarMath) -> bool:
    return (
        sub.is_active
        and sub.repetition_type != REPETITION_DISABLED
        and (sub.is_overdue(cal) or sub.days_until_next_billing(cal) <= 1)
    )


def _renew_until_current(sub: Subscription, cal: CalendarMath) -> date | None:
    """Advance until current. Returns the due date of the last closed period, or None."""
    closed = None
    while needs_auto_renewal(sub, cal):
        previous = sub.next_billing_date
        if not advance_billing_date(sub):
            break
        closed = previous
    return closed


def process_auto_renewals(
    subs: Iterable[Subscription],
    cal: CalendarMath,
    closed_periods: dict[UUID, date] | None = None,
) -> list[UUID]:
    """Auto-renewal sweep. Returns ids of renewed subscriptions.

    Each subscription is advanced until it no longer needs renewal, so the
    sweep converges in one pass and re-running it on the same clock is a no-op.

    Args:
        closed_periods: if given, receives {sub_id: due date of the period the
            sweep just closed} for every renewed subscription
    """
    renewed: list[UUID] = []
    for sub in subs:
        closed = _renew_until_current(sub, cal)
        if closed is not None:
            if closed_periods is not None:
                closed_periods[sub.id] = closed
            reset_payment_status(sub)
            logger.info(
                "Auto-renewed sub_id=%s (%s): next billing %s",
                sub.id, sub.name, sub.next_billing_date,
            )
            renewed.append(sub.id)
    return renewed


def process_payment_resets(subs: Iterable[Subscription], cal: CalendarMath) -> list[UUID]:
    """Payment-reset sweep: clear stale paid flags. Returns ids of reset subscriptions."""
    reset: list[UUID] = []
    for sub in subs:
        if sub.needs_payment_reset(cal):
            reset_payment_status(sub)
            reset.append(sub.id)
    return reset


def project_due_date(sub: Subscription, cal: CalendarMath) -> date:
    """Due date the user should expect next.

    Auto-renewing: the date the renewal sweep would converge to.
    Disabled: the projected due date of the current period.
    """
    if sub.repetition_type == REPETITION_DISABLED:
        return sub.calculate_current_period_due_date(cal)
    projected = sub.copy()
    _renew_until_current(projected, cal)
    return projected.next_billing_date

"""
Calendar arithmetic with an injectable clock.

Dates only for billing math (no time of day). Time zone matters only for
deciding what "today" is and for turning a (date, time) pair into a trigger
moment for reminders.
"""
import calendar
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: date, n: int) -> date:
    """Add n months, clipping the day to the end of the target month.

    Raises ValueError when the result falls outside the supported date range.
    """
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    if not 1 <= year <= 9999:
        raise ValueError(f"year {year} is out of range")
    day = min(d.day, last_day_of_month(year, month))
    return date(year, month, day)


def add_years(d: date, n: int) -> date:
    """Add n years (29 Feb -> 28 Feb in non-leap years)."""
    return add_months(d, 12 * n)


def days_between(start: date, end: date) -> int:
    return (end - start).days


def is_same_month(a: date, b: date) -> bool:
    return a.year == b.year and a.month == b.month


def start_of_month(d: date) -> date:
    return d.replace(day=1)


def last_day_of_previous_month(d: date) -> date:
    return start_of_month(d) - timedelta(days=1)


def _resolve_tz(tz: tzinfo | str | None) -> tzinfo:
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


class CalendarMath:
    """
    Clock + time zone used by every "now"-dependent computation.

    Usage:
        cal = CalendarMath("Europe/Kyiv")
        cal.today()

        # tests
        cal = CalendarMath.fixed(datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc))
    """

    def __init__(
        self,
        tz: tzinfo | str | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ):
        self.tz = _resolve_tz(tz)
        self._now_fn = now_fn

    @classmethod
    def fixed(cls, moment: datetime, tz: tzinfo | str | None = None) -> "CalendarMath":
        if tz is None and moment.tzinfo is not None:
            tz = moment.tzinfo
        resolved = _resolve_tz(tz)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=resolved)
        return cls(resolved, now_fn=lambda: moment)

    def now(self) -> datetime:
        if self._now_fn is not None:
            return self._now_fn().astimezone(self.tz)
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def start_of_day(self, d: date) -> datetime:
        return datetime.combine(d, time(0, 0), tzinfo=self.tz)

    def combine(self, d: date, t: time) -> datetime:
        return datetime.combine(d, time(t.hour, t.minute), tzinfo=self.tz)

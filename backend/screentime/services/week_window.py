from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from screentime.core.errors import InputError

DAYS_PER_WEEK = 7


@dataclass(frozen=True, slots=True)
class WeekWindow:
    """Inclusive Monday..Sunday date range."""

    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_week_start(day: date) -> bool:
    return day.weekday() == 0


def week_window_for(week_start: date) -> WeekWindow:
    if not is_week_start(week_start):
        raise InputError(f"week start {week_start.isoformat()} is not a Monday")
    return WeekWindow(start=week_start, end=week_start + timedelta(days=DAYS_PER_WEEK - 1))


def resolve_previous_week(reference: datetime | None = None) -> WeekWindow:
    """Return the most recently completed Monday-aligned week.

    The reference instant is evaluated in UTC (naive values are taken to
    already be UTC), so runs fired close to midnight in other zones resolve
    the same window. A Monday reference still yields the week before it.
    """
    moment = reference or _utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    today = moment.astimezone(timezone.utc).date()

    # date.weekday() is already Monday=0, the same offset as (day + 6) % 7
    # under a Sunday=0 convention.
    this_monday = today - timedelta(days=today.weekday())
    return week_window_for(this_monday - timedelta(days=DAYS_PER_WEEK))

"""Budget period windows anchored to a user-configured day of month.

A period runs from ``start_day`` of one calendar month to ``end_day`` of the
following one (e.g. the 25th to the 24th). Everything here is pure: callers
pass the configuration and the current local instant explicitly.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any

MIN_DAY = 1
MAX_DAY = 31
DEFAULT_START_DAY = 25
DEFAULT_END_DAY = 24

# Last representable millisecond of a day; periods are inclusive on both ends.
PERIOD_END_TIME = time(23, 59, 59, 999000)


@dataclass(frozen=True)
class PeriodConfig:
    start_day: int = DEFAULT_START_DAY
    end_day: int = DEFAULT_END_DAY


@dataclass(frozen=True)
class PeriodRange:
    start: datetime
    end: datetime


def validate_period_config(start_day: int, end_day: int) -> PeriodConfig:
    """Settings-boundary check; the calculator itself never validates."""
    for label, value in (("start_day", start_day), ("end_day", end_day)):
        if value < MIN_DAY or value > MAX_DAY:
            raise ValueError(f"{label} must be between {MIN_DAY} and {MAX_DAY}")
    return PeriodConfig(start_day=start_day, end_day=end_day)


def calendar_date(year: int, month: int, day: int) -> date:
    """
    Build a date, rolling month and day overflow into neighbouring months.

    ``month`` is 1-based. Month 0 is December of the previous year, month 13
    is January of the next; day 31 of April is May 1st and day 0 is the last
    day of the previous month. Nothing is clamped.
    """
    year_offset, month_zero_based = divmod(month - 1, 12)
    first_of_month = date(year + year_offset, month_zero_based + 1, 1)
    return first_of_month + timedelta(days=day - 1)


def compute_current_range(config: PeriodConfig, now: datetime | date) -> PeriodRange:
    """Return the period containing ``now`` for the given day-of-month pair."""
    today = now.date() if isinstance(now, datetime) else now

    if today.day >= config.start_day:
        start_month, end_month = today.month, today.month + 1
    else:
        start_month, end_month = today.month - 1, today.month

    start = datetime.combine(calendar_date(today.year, start_month, config.start_day), time.min)
    end = datetime.combine(calendar_date(today.year, end_month, config.end_day), PERIOD_END_TIME)
    return PeriodRange(start=start, end=end)


def previous_range(config: PeriodConfig, period: PeriodRange) -> PeriodRange:
    """The period containing the day before ``period`` starts."""
    return compute_current_range(config, period.start - timedelta(days=1))


def _as_datetime(value: datetime | date) -> datetime:
    # datetime is a date subclass, so check it first.
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def is_in_range(value: datetime | date, period: PeriodRange) -> bool:
    """Inclusive containment check; plain dates count as their midnight."""
    moment = _as_datetime(value)
    return period.start <= moment <= period.end


def expenses_in_range(expenses: Iterable[dict[str, Any]], period: PeriodRange) -> list[dict[str, Any]]:
    return [expense for expense in expenses if is_in_range(expense["date"], period)]


def _short_day(value: datetime) -> str:
    return f"{value:%b} {value.day}"


def format_range(period: PeriodRange, *, include_year: bool = False) -> str:
    """Render as 'Feb 25 - Mar 24', optionally suffixed with the end year."""
    label = f"{_short_day(period.start)} - {_short_day(period.end)}"
    if include_year:
        label = f"{label}, {period.end.year}"
    return label


def period_key(period: PeriodRange) -> str:
    """Stable identifier of a period, used to notice that a new one began."""
    return period.start.date().isoformat()

from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class Period:
    start: datetime
    end: datetime


def is_past_period(year: int, month: int, reference_now: datetime) -> bool:
    """Return True when (year, month) lies strictly before the month of
    ``reference_now``. The current month is never past: entries may still be
    added to it, so its report must not be cached."""
    if year < reference_now.year:
        return True
    return year == reference_now.year and month < reference_now.month


def month_bounds(year: int, month: int) -> Period:
    """First and last instant of the calendar month, both inclusive."""
    first = datetime(year, month, 1)
    if month == 12:
        next_month = first.replace(year=year + 1, month=1)
    else:
        next_month = first.replace(month=month + 1)
    return Period(first, next_month - timedelta(microseconds=1))


def previous_month(reference_now: datetime) -> tuple[int, int]:
    if reference_now.month == 1:
        return reference_now.year - 1, 12
    return reference_now.year, reference_now.month - 1


def local_now(timezone: str) -> datetime:
    return datetime.now(ZoneInfo(timezone)).replace(tzinfo=None)

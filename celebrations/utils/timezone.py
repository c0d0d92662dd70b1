import calendar
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import List


def utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def to_utc_naive(dt: datetime | None) -> datetime | None:
    """
    Normalize any datetime to UTC-naive (tzinfo=None) for consistent storage/comparison.
    - Aware datetimes are converted to UTC and tzinfo is stripped
    - Naive datetimes are returned as-is (assumed UTC)
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(dt_timezone.utc).replace(tzinfo=None)


def month_day_key(value: date | datetime) -> str:
    """Month-day pair as stored on events, e.g. "0229"."""
    return value.strftime("%m%d")


def upcoming_year(reference: datetime, today: date) -> int:
    """
    Year of the next occurrence of ``reference``'s month-day on or after ``today``.

    A month-day earlier in the calendar than today has already passed this
    year, e.g. a Jan 1st event seen from Dec 30th belongs to next year.
    """
    if month_day_key(to_utc_naive(reference)) < month_day_key(today):
        return today.year + 1
    return today.year


def occurrence_datetime(reference: datetime, year: int) -> datetime:
    """
    Move an event reference date into ``year``.

    Feb 29th falls back to Feb 28th when ``year`` is not a leap year, otherwise
    the occurrence could never be created. The time of day is kept. Returns a
    UTC-naive datetime.
    """
    reference = to_utc_naive(reference)
    day = reference.day
    if reference.month == 2 and day > 28 and not calendar.isleap(year):
        day = 28
    return reference.replace(year=year, day=day)


def upcoming_month_day_keys(today: date, horizon_days: int = 3) -> List[str]:
    """
    Month-day keys for ``today`` and the following ``horizon_days - 1`` days.

    In a non-leap February "0229" is appended once the horizon reaches the end
    of the month, so Feb 29th events are previewed before their Feb 28th
    occurrence.
    """
    keys = [month_day_key(today + timedelta(days=i)) for i in range(horizon_days)]
    if (
        not calendar.isleap(today.year)
        and today.month == 2
        and today.day <= 29
        and 29 - today.day < horizon_days
    ):
        keys.append("0229")
    return keys


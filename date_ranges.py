"""
Whole-day date range helpers.

All ranges are inclusive on both ends and work on naive calendar dates:
time-of-day and timezone offsets are dropped before any comparison.
"""

from datetime import date, datetime, timedelta
from typing import List

from config import Config
from errors import InvalidRange

DATE_FMT = '%Y-%m-%d'


def parse_date(value) -> date:
    """Coerce a date-like value to a naive date (supports 'YYYY-MM-DD' or ISO with T)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        base = value.strip().split('T', 1)[0].split(' ', 1)[0]
        try:
            return datetime.strptime(base, DATE_FMT).date()
        except ValueError:
            raise InvalidRange(f"Invalid date '{value}'. Use YYYY-MM-DD")
    raise InvalidRange(f"Unsupported date: {value!r}")


def format_date(day: date) -> str:
    return day.strftime(DATE_FMT)


def day_count(start, end) -> int:
    """Number of calendar days in the inclusive range."""
    start, end = parse_date(start), parse_date(end)
    if end < start:
        raise InvalidRange("End date must not be before start date")
    return (end - start).days + 1


def enumerate_days(start, end) -> List[date]:
    """Every calendar day from start to end, inclusive and ordered."""
    start, end = parse_date(start), parse_date(end)
    total = day_count(start, end)
    return [start + timedelta(days=offset) for offset in range(total)]


def validate_range(start, end, reference_today, max_days: int = None) -> int:
    """
    Check a bookable range and return its length in days.

    Rejects inverted ranges, ranges starting before reference_today and
    ranges longer than max_days (Config.MAX_RENTAL_DAYS by default).
    """
    start, end = parse_date(start), parse_date(end)
    reference_today = parse_date(reference_today)
    max_days = Config.MAX_RENTAL_DAYS if max_days is None else max_days

    if end < start:
        raise InvalidRange("End date must not be before start date")
    if start < reference_today:
        raise InvalidRange("Start date cannot be in the past")

    total = (end - start).days + 1
    if total < Config.MIN_RENTAL_DAYS:
        raise InvalidRange(f"Minimum rental period is {Config.MIN_RENTAL_DAYS} days")
    if total > max_days:
        raise InvalidRange(f"Maximum rental period is {max_days} days")
    return total


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Inclusive ranges overlap iff a_start <= b_end and b_start <= a_end."""
    return a_start <= b_end and b_start <= a_end

"""
Inclusive whole-day range helpers: parsing, enumeration and booking-range validation.
"""

from datetime import date, datetime, timezone

import pytest

from date_ranges import day_count, enumerate_days, parse_date, ranges_overlap, validate_range
from errors import InvalidRange


def test_enumerate_days_is_inclusive_and_ordered():
    days = enumerate_days(date(2024, 6, 1), date(2024, 6, 3))
    assert days == [date(2024, 6, 1), date(2024, 6, 2), date(2024, 6, 3)]


def test_single_day_range_has_one_day():
    assert enumerate_days("2024-06-01", "2024-06-01") == [date(2024, 6, 1)]
    assert day_count("2024-06-01", "2024-06-01") == 1


def test_parse_date_drops_time_of_day():
    assert parse_date("2024-06-01T23:59:00Z") == date(2024, 6, 1)
    assert parse_date("2024-06-01 08:00") == date(2024, 6, 1)
    assert parse_date(datetime(2024, 6, 1, 22, 0, tzinfo=timezone.utc)) == date(2024, 6, 1)


@pytest.mark.parametrize("value", ["06/01/2024", "2024-13-01", "", None, 20240601])
def test_parse_date_rejects_garbage(value):
    with pytest.raises(InvalidRange):
        parse_date(value)


def test_enumerate_rejects_inverted_range():
    with pytest.raises(InvalidRange):
        enumerate_days("2024-06-03", "2024-06-01")


def test_validate_range_returns_length():
    assert validate_range("2024-06-01", "2024-06-03", date(2024, 5, 1)) == 3


def test_validate_range_allows_starting_today():
    assert validate_range("2024-05-01", "2024-05-01", date(2024, 5, 1)) == 1


def test_validate_range_rejects_past_start():
    with pytest.raises(InvalidRange, match="past"):
        validate_range("2024-04-30", "2024-05-02", date(2024, 5, 1))


def test_validate_range_rejects_end_before_start():
    with pytest.raises(InvalidRange):
        validate_range("2024-06-03", "2024-06-01", date(2024, 5, 1))


def test_validate_range_enforces_maximum():
    assert validate_range("2024-06-01", "2024-06-30", date(2024, 5, 1)) == 30
    with pytest.raises(InvalidRange, match="Maximum"):
        validate_range("2024-06-01", "2024-07-01", date(2024, 5, 1))
    assert validate_range("2024-06-01", "2024-07-01", date(2024, 5, 1), max_days=60) == 31


def test_ranges_overlap_is_inclusive():
    a = (date(2024, 6, 1), date(2024, 6, 3))
    assert ranges_overlap(*a, date(2024, 6, 3), date(2024, 6, 5))
    assert ranges_overlap(*a, date(2024, 5, 30), date(2024, 6, 1))
    assert not ranges_overlap(*a, date(2024, 6, 4), date(2024, 6, 6))
    assert not ranges_overlap(*a, date(2024, 5, 25), date(2024, 5, 31))

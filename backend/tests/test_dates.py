"""Tests for week bucket helpers."""
from datetime import date, datetime

import pytest

from app.utils.dates import get_upcoming_sunday, parse_capture_date


@pytest.mark.parametrize("now, expected", [
    (datetime(2024, 5, 6, 9, 0), date(2024, 5, 12)),    # Monday
    (datetime(2024, 5, 11, 23, 59), date(2024, 5, 12)),  # Saturday
    (datetime(2024, 5, 12, 0, 1), date(2024, 5, 19)),   # Sunday rolls to next week
])
def test_get_upcoming_sunday(now, expected):
    assert get_upcoming_sunday(now) == expected


def test_get_upcoming_sunday_defaults_to_today():
    sunday = get_upcoming_sunday()
    assert sunday.weekday() == 6
    assert 1 <= (sunday - date.today()).days <= 7


def test_parse_capture_date_utc_suffix():
    assert parse_capture_date("2024-05-08T14:30:00Z") == datetime(2024, 5, 8, 14, 30)


def test_parse_capture_date_converts_offsets_to_utc():
    assert parse_capture_date("2024-05-08T14:30:00+02:00") == datetime(2024, 5, 8, 12, 30)


def test_parse_capture_date_plain_date():
    assert parse_capture_date("2024-05-08") == datetime(2024, 5, 8)


@pytest.mark.parametrize("value", [None, "", "   ", "yesterday", "2024-13-40"])
def test_parse_capture_date_rejects_bad_input(value):
    with pytest.raises(ValueError):
        parse_capture_date(value)

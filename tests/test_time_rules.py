from datetime import datetime, timedelta

import pytest

from solyield.services.time_rules import (
    StoreClock, format_minutes_as_time, is_valid_date, is_valid_time,
    normalize_time, parse_time_to_minutes, whole_minutes_between,
)


@pytest.mark.parametrize("value,minutes", [
    ("12:00 AM", 0),
    ("12:30 AM", 30),
    ("09:03 AM", 543),
    ("9:03 am", 543),
    ("12:00 PM", 720),
    ("01:15 PM", 795),
    ("11:59 PM", 1439),
    ("00:00", 0),
    ("14:45", 885),
])
def test_parse_time_to_minutes(value, minutes):
    assert parse_time_to_minutes(value) == minutes


@pytest.mark.parametrize("value", ["13:00 PM", "00:30 AM", "24:00", "10:60", "10", "", None])
def test_invalid_times(value):
    with pytest.raises(ValueError):
        parse_time_to_minutes(value)
    assert is_valid_time(value) is False


def test_format_minutes_as_time():
    assert format_minutes_as_time(0) == "12:00 AM"
    assert format_minutes_as_time(543) == "09:03 AM"
    assert format_minutes_as_time(720) == "12:00 PM"
    assert format_minutes_as_time(795) == "01:15 PM"


@pytest.mark.parametrize("value,expected", [
    ("9:00 AM", "09:00 AM"),
    ("9:05 pm", "09:05 PM"),
    (" 10:30AM ", "10:30 AM"),
    ("12:00 PM", "12:00 PM"),
    ("7:45", "07:45"),
    ("14:45", "14:45"),
])
def test_normalize_time_pads_hours(value, expected):
    assert normalize_time(value) == expected


def test_normalize_time_rejects_garbage():
    with pytest.raises(ValueError):
        normalize_time("9 o'clock")


def test_is_valid_date():
    assert is_valid_date("2025-06-01")
    assert not is_valid_date("2025-02-30")
    assert not is_valid_date("2025-6-1")
    assert not is_valid_date(None)


def test_whole_minutes_between_rounds():
    start = datetime(2025, 6, 1, 9, 0, 0)
    assert whole_minutes_between(start, start + timedelta(minutes=47)) == 47
    assert whole_minutes_between(start, start + timedelta(minutes=47, seconds=29)) == 47
    assert whole_minutes_between(start, start + timedelta(minutes=47, seconds=31)) == 48


def test_store_clock_never_repeats():
    frozen = datetime(2025, 6, 1, 9, 0, 0)
    clock = StoreClock(lambda: frozen)

    stamps = [clock.stamp() for _ in range(3)]

    assert stamps[0] == frozen
    assert stamps[0] < stamps[1] < stamps[2]
    assert clock.now() == frozen

from datetime import datetime, timedelta, timezone

import pytest

from app.utils.dates import (
    describe_lead,
    extract_time,
    format_moment,
    parse_lead_minutes,
    parse_moment,
    validate_moment,
)
from conftest import NOW, TZ


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("tomorrow at 3pm", utc(2026, 10, 19, 22, 0)),
        ("amanhã às 15h", utc(2026, 10, 19, 22, 0)),
        ("friday 9:30", utc(2026, 10, 23, 16, 30)),
        ("sexta-feira 9h", utc(2026, 10, 23, 16, 0)),
        ("sunday 8am", utc(2026, 10, 25, 15, 0)),
        ("in 2 hours", utc(2026, 10, 18, 18, 0)),
        ("em 30 minutos", utc(2026, 10, 18, 16, 30)),
        ("daqui a 3 dias", utc(2026, 10, 21, 16, 0)),
        ("in 3 days at 5pm", utc(2026, 10, 22, 0, 0)),
        ("remind me to pay rent in 3 days at 5pm", utc(2026, 10, 22, 0, 0)),
        ("daqui a 2 dias às 8h", utc(2026, 10, 20, 15, 0)),
        ("in 1 week at 9:30", utc(2026, 10, 25, 16, 30)),
        ("in half an hour", utc(2026, 10, 18, 16, 30)),
        ("at 17:45", utc(2026, 10, 19, 0, 45)),
        ("at 8:00", utc(2026, 10, 19, 15, 0)),
        ("noon tomorrow", utc(2026, 10, 19, 19, 0)),
        ("25/12 18:00", utc(2026, 12, 26, 2, 0)),
        ("15/01 10:00", utc(2027, 1, 15, 18, 0)),
        ("2026-11-02 10:00", utc(2026, 11, 2, 18, 0)),
        ("19 Oct 2026, 15:00", utc(2026, 10, 19, 22, 0)),
        ("Oct 20 at 7pm", utc(2026, 10, 21, 2, 0)),
    ],
)
def test_parse_moment(text, expected):
    assert parse_moment(text, NOW, TZ) == expected


@pytest.mark.parametrize("text", ["tomorrow", "banana", "", "31/02 10:00", "at 25:00"])
def test_parse_moment_rejects(text):
    assert parse_moment(text, NOW, TZ) is None


def test_extract_time_meridiem():
    assert extract_time("12am") == (0, 0)
    assert extract_time("12pm") == (12, 0)
    assert extract_time("7:15 p.m.") == (19, 15)
    assert extract_time("13pm") is None


@pytest.mark.parametrize(
    "text, minutes",
    [
        ("30 minutes", 30),
        ("30 minutes before", 30),
        ("1 hour", 60),
        ("2 hours", 120),
        ("1h30", 90),
        ("1 hour and 15 minutes", 75),
        ("half an hour", 30),
        ("uma hora", 60),
        ("1.5 hours", 90),
        ("45", 45),
        ("0", 0),
        ("at the exact time", 0),
        ("na hora", 0),
        ("2 days", 2880),
    ],
)
def test_parse_lead_minutes(text, minutes):
    assert parse_lead_minutes(text) == minutes


@pytest.mark.parametrize("text", ["banana", "", "soon"])
def test_parse_lead_minutes_rejects(text):
    assert parse_lead_minutes(text) is None


def test_validate_moment_boundaries():
    assert validate_moment(NOW, NOW) == "past"
    assert validate_moment(NOW - timedelta(minutes=1), NOW) == "past"
    assert validate_moment(NOW + timedelta(minutes=1), NOW) is None
    assert validate_moment(NOW + timedelta(days=365), NOW) is None
    assert validate_moment(NOW + timedelta(days=365, minutes=1), NOW) == "too_far"


@pytest.mark.parametrize(
    "moment",
    [
        utc(2026, 10, 19, 22, 0),
        utc(2026, 12, 31, 7, 59),
        utc(2027, 3, 14, 9, 5),
        utc(2027, 7, 4, 23, 30),
    ],
)
def test_format_then_parse_returns_same_minute(moment):
    assert parse_moment(format_moment(moment, TZ), NOW, TZ) == moment


def test_format_moment_uses_local_time():
    assert format_moment(utc(2026, 10, 19, 22, 0), TZ) == "Mon 19 Oct 2026, 15:00"


def test_describe_lead():
    assert describe_lead(0) == "at the exact time"
    assert describe_lead(1) == "1 minute before"
    assert describe_lead(90) == "1 hour 30 min before"
    assert describe_lead(2880) == "2 days before"

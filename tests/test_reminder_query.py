from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from app.services.reminder_query import format_reminders_list, parse_period
from conftest import NOW, TZ

EPS = timedelta(microseconds=1)


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "text,start,end,label",
    [
        ("what do I have tomorrow?", utc(2026, 10, 19, 7), utc(2026, 10, 20, 7), "tomorrow"),
        ("o que tenho amanhã", utc(2026, 10, 19, 7), utc(2026, 10, 20, 7), "tomorrow"),
        ("day after tomorrow", utc(2026, 10, 20, 7), utc(2026, 10, 21, 7), "the day after tomorrow"),
        ("anything today", utc(2026, 10, 18, 7), utc(2026, 10, 19, 7), "today"),
        # Sunday: the current week ends tonight
        ("this week", utc(2026, 10, 18, 7), utc(2026, 10, 19, 7), "this week"),
        ("next week", utc(2026, 10, 19, 7), utc(2026, 10, 26, 7), "next week"),
        ("this month", utc(2026, 10, 18, 7), utc(2026, 11, 1, 7), "this month"),
        ("next 3 days", utc(2026, 10, 18, 7), utc(2026, 10, 21, 7), "the next 3 days"),
        ("friday", utc(2026, 10, 23, 7), utc(2026, 10, 24, 7), "Friday"),
        ("whatever", utc(2026, 10, 18, 7), utc(2026, 10, 25, 7), "the next 7 days"),
    ],
)
def test_parse_period(text, start, end, label):
    period = parse_period(text, NOW, TZ)
    assert period.start == start
    assert period.end == end - EPS
    assert period.label == label


def test_next_month_spans_whole_month():
    period = parse_period("next month", NOW, TZ)
    assert period.start == utc(2026, 11, 1, 7)
    # Standard time from 1 Nov
    assert period.end == utc(2026, 12, 1, 8) - EPS
    assert period.label == "next month"


def _reminder(text, local):
    return SimpleNamespace(reminder_text=text, target_at=local.replace(tzinfo=TZ).astimezone(timezone.utc))


def test_single_day_list():
    body = format_reminders_list([_reminder("call mom", datetime(2026, 10, 19, 15, 0))], "tomorrow", NOW, TZ)
    assert body == "Your reminders for tomorrow:\n\n1. 15:00 - call mom\n\nTotal: 1 reminder"


def test_multi_day_list_groups_by_day():
    body = format_reminders_list(
        [
            _reminder("gym", datetime(2026, 10, 20, 9, 0)),
            _reminder("call mom", datetime(2026, 10, 19, 15, 0)),
            _reminder("dentist", datetime(2026, 10, 19, 8, 30)),
        ],
        "the next 7 days",
        NOW,
        TZ,
    )
    assert body.splitlines() == [
        "Your reminders for the next 7 days:",
        "",
        "Tomorrow (19/10)",
        "1. 08:30 - dentist",
        "2. 15:00 - call mom",
        "",
        "Day after tomorrow (20/10)",
        "1. 09:00 - gym",
        "",
        "Total: 3 reminders",
    ]


def test_empty_list():
    assert format_reminders_list([], "today", NOW, TZ) == "You have no reminders for today."

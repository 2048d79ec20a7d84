"""Natural-language periods ("tomorrow", "next week", "próximos 3 dias")
turned into date ranges, and reminder lists formatted for SMS."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from itertools import groupby
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from app.utils.dates import WEEKDAYS, format_time, get_timezone, normalize

_LOGGER = logging.getLogger(__name__)

DEFAULT_DAYS = 7
_WEEKDAY_LABELS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_NEXT_DAYS_RE = re.compile(r"\b(?:next|proximos?|coming)\s+(\d+)\s+(?:days?|dias?)\b")


@dataclass
class Period:
    start: datetime
    end: datetime
    label: str


def _midnight(day: datetime, tz: ZoneInfo) -> datetime:
    return datetime.combine(day.date(), time(0, 0), tzinfo=tz)


def _days(start_local: datetime, count: int, tz: ZoneInfo, label: str) -> Period:
    """``count`` whole local days starting at ``start_local``'s midnight."""
    start = _midnight(start_local, tz)
    end = _midnight(start_local + timedelta(days=count), tz) - timedelta(microseconds=1)
    return Period(start.astimezone(timezone.utc), end.astimezone(timezone.utc), label)


def parse_period(text: str, now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> Period:
    """Resolve a period phrase to an inclusive UTC range; defaults to the next 7 days."""
    tz = tz or get_timezone()
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    t = normalize(text)

    if "day after tomorrow" in t or "depois de amanha" in t:
        return _days(local_now + timedelta(days=2), 1, tz, "the day after tomorrow")
    if "tomorrow" in t or "amanha" in t:
        return _days(local_now + timedelta(days=1), 1, tz, "tomorrow")
    if "today" in t or "tonight" in t or "hoje" in t:
        return _days(local_now, 1, tz, "today")

    if re.search(r"\b(?:this|esta|essa) (?:week|semana)\b", t):
        # Through Sunday
        return _days(local_now, 7 - local_now.weekday(), tz, "this week")
    if re.search(r"\b(?:next week|proxima semana|semana que vem)\b", t):
        monday = local_now + timedelta(days=7 - local_now.weekday())
        return _days(monday, 7, tz, "next week")

    if re.search(r"\b(?:this|este|esse) (?:month|mes)\b", t):
        first_next = (local_now.replace(day=1) + timedelta(days=32)).replace(day=1)
        return _days(local_now, (first_next.date() - local_now.date()).days, tz, "this month")
    if re.search(r"\b(?:next month|proximo mes|mes que vem)\b", t):
        first_next = (local_now.replace(day=1) + timedelta(days=32)).replace(day=1)
        first_after = (first_next + timedelta(days=32)).replace(day=1)
        return _days(first_next, (first_after.date() - first_next.date()).days, tz, "next month")

    match = _NEXT_DAYS_RE.search(t)
    if match and int(match.group(1)) > 0:
        count = int(match.group(1))
        return _days(local_now, count, tz, f"the next {count} days")

    for word in re.findall(r"[a-z]+(?:-feira)?", t):
        if word in WEEKDAYS and len(word) > 3:
            ahead = (WEEKDAYS[word] - local_now.weekday()) % 7 or 7
            return _days(local_now + timedelta(days=ahead), 1, tz, _WEEKDAY_LABELS[WEEKDAYS[word]])

    _LOGGER.info("Period not recognised in %r, using the next %d days", text, DEFAULT_DAYS)
    return _days(local_now, DEFAULT_DAYS, tz, f"the next {DEFAULT_DAYS} days")


def _day_label(moment: datetime, local_now: datetime) -> str:
    diff = (moment.date() - local_now.date()).days
    stamp = moment.strftime("%d/%m")
    if diff == 0:
        return f"Today ({stamp})"
    if diff == 1:
        return f"Tomorrow ({stamp})"
    if diff == 2:
        return f"Day after tomorrow ({stamp})"
    weekday = _WEEKDAY_LABELS[moment.weekday()]
    if diff <= 7:
        return f"{weekday} ({stamp})"
    return f"{weekday}, {stamp}"


def format_reminders_list(
    reminders: Iterable,
    label: str,
    now: Optional[datetime] = None,
    tz: Optional[ZoneInfo] = None,
) -> str:
    """Group reminders by local day with ``HH:MM - text`` lines and a total."""
    tz = tz or get_timezone()
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    items = sorted(reminders, key=lambda r: r.target_at)
    if not items:
        return f"You have no reminders for {label}."

    days: List[tuple] = [
        (day, list(group))
        for day, group in groupby(items, key=lambda r: r.target_at.astimezone(tz).date())
    ]
    lines = [f"Your reminders for {label}:", ""]
    number = 0
    for index, (_, group) in enumerate(days):
        if len(days) > 1:
            lines.append(_day_label(group[0].target_at.astimezone(tz), local_now))
            number = 0
        for reminder in group:
            number += 1
            lines.append(f"{number}. {format_time(reminder.target_at, tz)} - {reminder.reminder_text}")
        if index < len(days) - 1:
            lines.append("")

    total = len(items)
    lines.append("")
    lines.append(f"Total: {total} reminder{'s' if total != 1 else ''}")
    return "\n".join(lines)

"""Deterministic date/time and duration parsing for reminder dialogs.

Understands English and Portuguese phrasings:
- "tomorrow at 3pm", "amanhã às 15h"
- "friday 9:30", "sexta-feira 9h"
- "in 2 hours", "em 30 minutos", "daqui a 3 dias"
- "19 Oct 2026, 15:00", "2026-10-19 15:00", "25/12 18:00"
- "at 17:45" (today, or tomorrow when already past)

Every parsed moment is returned timezone-aware in UTC, truncated to the
minute. Wall-clock phrases are interpreted in the user's timezone.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from config import settings

WEEKDAYS = {
    "monday": 0, "mon": 0, "segunda": 0, "segunda-feira": 0,
    "tuesday": 1, "tue": 1, "tues": 1, "terca": 1, "terca-feira": 1,
    "wednesday": 2, "wed": 2, "quarta": 2, "quarta-feira": 2,
    "thursday": 3, "thu": 3, "thurs": 3, "quinta": 3, "quinta-feira": 3,
    "friday": 4, "fri": 4, "sexta": 4, "sexta-feira": 4,
    "saturday": 5, "sat": 5, "sabado": 5,
    "sunday": 6, "sun": 6, "domingo": 6,
}

# Longest phrases first so "day after tomorrow" wins over "tomorrow".
RELATIVE_DAYS = (
    ("day after tomorrow", 2),
    ("depois de amanha", 2),
    ("tomorrow", 1),
    ("amanha", 1),
    ("tonight", 0),
    ("today", 0),
    ("hoje", 0),
)

MONTHS_EN = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}
MONTHS = {
    **MONTHS_EN,
    "janeiro": 1, "fevereiro": 2, "fev": 2, "marco": 3, "abril": 4, "abr": 4,
    "maio": 5, "mai": 5, "junho": 6, "julho": 7, "agosto": 8, "ago": 8,
    "setembro": 9, "set": 9, "outubro": 10, "out": 10, "novembro": 11,
    "dezembro": 12, "dez": 12,
}

_UNIT_MINUTES = {
    "m": 1, "min": 1, "mins": 1, "minute": 1, "minutes": 1, "minuto": 1, "minutos": 1,
    "h": 60, "hr": 60, "hrs": 60, "hour": 60, "hours": 60, "hora": 60, "horas": 60,
    "d": 1440, "day": 1440, "days": 1440, "dia": 1440, "dias": 1440,
    "week": 10080, "weeks": 10080, "semana": 10080, "semanas": 10080,
}
UNIT_PATTERN = "|".join(sorted(_UNIT_MINUTES, key=len, reverse=True))

_RELATIVE_RE = re.compile(
    rf"\b(?:in|em|daqui(?:\s+a)?|within)\s+(\d+\s*|(?:an?|one|uma?|half\s+an?|meia)\s+)({UNIT_PATTERN})\b"
)
_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_SLASH_DATE_RE = re.compile(r"\b(\d{1,2})/(\d{1,2})(?:/(\d{2}|\d{4}))?\b")
_DAY_MONTH_RE = re.compile(
    r"\b(\d{1,2})(?:st|nd|rd|th)?\s+(?:de\s+)?([a-z]{3,9})\.?(?:,?\s+(?:de\s+)?(\d{4}))?\b"
)
_MONTH_DAY_RE = re.compile(
    r"\b([a-z]{3,9})\.?\s+(\d{1,2})(?:st|nd|rd|th)?\b(?:,?\s+(\d{4})\b)?"
)

_CLOCK_RE = re.compile(r"\b(\d{1,2}):(\d{2})\s*(am|pm)?\b")
_AMPM_RE = re.compile(r"\b(\d{1,2})\s*(am|pm)\b")
_H_RE = re.compile(r"\b(\d{1,2})h(\d{2})?\b")

_ZERO_LEAD_PHRASES = (
    "exact time", "on time", "at the time", "right on time", "when it happens",
    "na hora", "no horario", "hora exata", "no momento",
)
_NO_LEAD_WORDS = {"0", "zero", "none", "nenhum", "nenhuma"}


def normalize(text: str) -> str:
    """Lowercase, strip accents and collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = stripped.lower().replace("a.m.", "am").replace("p.m.", "pm")
    return " ".join(stripped.split())


def get_timezone(name: Optional[str] = None) -> ZoneInfo:
    return ZoneInfo(name or settings.DEFAULT_TIMEZONE)


def _month(word: str, english_only: bool = False) -> Optional[int]:
    table = MONTHS_EN if english_only else MONTHS
    return table.get(word.rstrip("."))


def _quantity(token: str) -> Optional[float]:
    token = token.strip()
    if token.isdigit():
        return float(token)
    if token.startswith("half") or token == "meia":
        return 0.5
    if token in {"a", "an", "one", "um", "uma"}:
        return 1.0
    return None


def extract_time(text: str) -> Optional[Tuple[int, int]]:
    """Return ``(hour, minute)`` for the first clock expression in ``text``."""
    t = normalize(text)

    match = _CLOCK_RE.search(t)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        hour = _apply_meridiem(hour, match.group(3))
    else:
        match = _AMPM_RE.search(t)
        if match:
            hour, minute = _apply_meridiem(int(match.group(1)), match.group(2)), 0
        else:
            match = _H_RE.search(t)
            if match:
                hour, minute = int(match.group(1)), int(match.group(2) or 0)
            elif "noon" in t or "meio dia" in t or "meio-dia" in t:
                hour, minute = 12, 0
            elif "midnight" in t or "meia noite" in t or "meia-noite" in t:
                hour, minute = 0, 0
            else:
                return None

    if hour is None or not (0 <= hour <= 23 and 0 <= minute <= 59):
        return None
    return hour, minute


def _apply_meridiem(hour: int, meridiem: Optional[str]) -> Optional[int]:
    if not meridiem:
        return hour
    if not 1 <= hour <= 12:
        return None
    if meridiem == "pm" and hour < 12:
        return hour + 12
    if meridiem == "am" and hour == 12:
        return 0
    return hour


def _at(day: datetime, hm: Tuple[int, int], tz: ZoneInfo) -> datetime:
    return datetime(day.year, day.month, day.day, hm[0], hm[1], tzinfo=tz)


def _explicit_date(t: str, local_now: datetime) -> Optional[Tuple[int, int, Optional[int]]]:
    """``(day, month, year)`` of an explicit calendar date, if any."""
    match = _ISO_DATE_RE.search(t)
    if match:
        return int(match.group(3)), int(match.group(2)), int(match.group(1))

    match = _SLASH_DATE_RE.search(t)
    if match:
        year = match.group(3)
        if year is not None and len(year) == 2:
            year = str(2000 + int(year))
        return int(match.group(1)), int(match.group(2)), int(year) if year else None

    for match in _DAY_MONTH_RE.finditer(t):
        month = _month(match.group(2))
        if month:
            year = match.group(3)
            return int(match.group(1)), month, int(year) if year else None

    for match in _MONTH_DAY_RE.finditer(t):
        month = _month(match.group(1), english_only=True)
        if month:
            year = match.group(3)
            return int(match.group(2)), month, int(year) if year else None

    return None


def parse_moment(text: str, now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    """Parse a natural-language moment; ``None`` when nothing usable is found.

    Relative offsets ("in 2 hours") need no clock time; day-based phrases
    ("tomorrow", "friday", "25/12") require one.
    """
    tz = tz or get_timezone()
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone(tz)
    t = normalize(text)

    match = _RELATIVE_RE.search(t)
    if match:
        quantity = _quantity(match.group(1))
        if quantity is not None:
            minutes = quantity * _UNIT_MINUTES[match.group(2)]
            moment = now + timedelta(minutes=minutes)
            # "in 3 days at 5pm": the clock time wins over the current one
            hm = extract_time(t) if _UNIT_MINUTES[match.group(2)] >= 1440 else None
            if hm is not None:
                return _at(local_now + timedelta(minutes=minutes), hm, tz).astimezone(timezone.utc)
            return moment.replace(second=0, microsecond=0).astimezone(timezone.utc)

    hm = extract_time(t)
    if hm is None:
        return None

    try:
        explicit = _explicit_date(t, local_now)
        if explicit is not None:
            day, month, year = explicit
            moment = datetime(year or local_now.year, month, day, hm[0], hm[1], tzinfo=tz)
            if year is None and moment <= local_now:
                moment = moment.replace(year=moment.year + 1)
            return moment.astimezone(timezone.utc)
    except ValueError:
        return None

    for phrase, offset in RELATIVE_DAYS:
        if re.search(rf"\b{phrase}\b", t):
            moment = _at(local_now + timedelta(days=offset), hm, tz)
            return moment.astimezone(timezone.utc)

    for word in re.findall(r"[a-z]+(?:-feira)?", t):
        if word in WEEKDAYS:
            ahead = (WEEKDAYS[word] - local_now.weekday()) % 7
            moment = _at(local_now + timedelta(days=ahead), hm, tz)
            if moment <= local_now:
                moment = _at(local_now + timedelta(days=ahead or 7), hm, tz)
            return moment.astimezone(timezone.utc)

    moment = _at(local_now, hm, tz)
    if moment <= local_now:
        moment = _at(local_now + timedelta(days=1), hm, tz)
    return moment.astimezone(timezone.utc)


def parse_lead_minutes(text: str) -> Optional[int]:
    """Parse how long before the event the notice should go out.

    Accepts "30 minutes", "1 hour", "2 hours", "1h30", "half an hour",
    a bare integer (minutes), and "at the exact time"/"na hora" (0).
    """
    t = normalize(text)
    if not t:
        return None
    if t in _NO_LEAD_WORDS or any(phrase in t for phrase in _ZERO_LEAD_PHRASES):
        return 0

    match = re.search(r"\b(\d+)\s*h(?:ours?|rs?|oras?)?\s*(?:and\s+|e\s+)?(\d+)\s*(?:m|min|mins|minutes?|minutos?)?\b", t)
    if match:
        return int(match.group(1)) * 60 + int(match.group(2))

    match = re.search(rf"\b(\d+(?:[.,]\d+)?\s*|(?:an?|one|uma?|half\s+an?|meia)\s+)({UNIT_PATTERN})\b", t)
    if match:
        token = match.group(1).strip().replace(",", ".")
        quantity = float(token) if token[0].isdigit() else _quantity(token)
        if quantity is not None:
            return int(round(quantity * _UNIT_MINUTES[match.group(2)]))

    match = re.fullmatch(r"(\d+)(?:\s*(?:before|antes))?", t)
    if match:
        return int(match.group(1))

    return None


def validate_moment(moment: datetime, now: datetime, horizon_days: Optional[int] = None) -> Optional[str]:
    """``None`` when ``moment`` is usable, otherwise ``"past"`` or ``"too_far"``.

    A moment must be strictly after ``now`` and at most ``horizon_days`` ahead.
    """
    horizon_days = settings.MAX_HORIZON_DAYS if horizon_days is None else horizon_days
    if moment <= now:
        return "past"
    if moment > now + timedelta(days=horizon_days):
        return "too_far"
    return None


def format_moment(moment: datetime, tz: Optional[ZoneInfo] = None) -> str:
    """Render a moment for the user, e.g. ``Mon 19 Oct 2026, 15:00``.

    The output is accepted by :func:`parse_moment`.
    """
    local = moment.astimezone(tz or get_timezone())
    return local.strftime("%a %d %b %Y, %H:%M")


def format_time(moment: datetime, tz: Optional[ZoneInfo] = None) -> str:
    return moment.astimezone(tz or get_timezone()).strftime("%H:%M")


def describe_lead(minutes: int) -> str:
    if minutes == 0:
        return "at the exact time"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} before"
    hours, rest = divmod(minutes, 60)
    if hours >= 24 and rest == 0 and hours % 24 == 0:
        days = hours // 24
        return f"{days} day{'s' if days != 1 else ''} before"
    label = f"{hours} hour{'s' if hours != 1 else ''}"
    if rest:
        label += f" {rest} min"
    return f"{label} before"

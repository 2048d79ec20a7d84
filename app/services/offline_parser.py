"""Keyword/regex slot extractor used when the LLM is unavailable.

Produces the same ``ExtractorReply`` shape as the LLM path, always with
``method="offline"``: ``"medium"`` confidence when a pattern matched and
``"low"`` otherwise.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from app.types.parser_contract import (
    CreateReply,
    DeleteReply,
    ExtractionScope,
    ExtractorReply,
    NoneReply,
    QueryReply,
)
from app.utils.dates import MONTHS, MONTHS_EN, UNIT_PATTERN, get_timezone, normalize, parse_lead_minutes, parse_moment

_CREATE_PREFIX_RE = re.compile(
    r"^\s*(?:please\s+|por favor,?\s+)?"
    r"(?:remind me(?:\s+to|\s+about|\s+of)?"
    r"|set (?:a |an )?reminder(?:\s+to|\s+for|\s+about)?"
    r"|create (?:a )?reminder(?:\s+to|\s+for|\s+about)?"
    r"|reminder(?:\s*:|\s+to|\s+for)?"
    r"|don'?t let me forget(?:\s+to)?"
    r"|me lembr[ae](?:\s+de)?"
    r"|lembr[ae](?:-me)?(?:\s+de)?"
    r"|lembrar(?:\s+de)?"
    r"|criar lembrete(?:\s+de|\s+para)?"
    r"|lembrete(?:\s*:|\s+de|\s+para)?)\b",
    re.IGNORECASE,
)
_CREATE_HINT_RE = re.compile(
    r"\b(?:remind|reminder|don'?t forget|lembr\w*|n[aã]o esquecer)\b", re.IGNORECASE
)

_DELETE_RE = re.compile(
    r"^\s*(?:please\s+|por favor,?\s+)?"
    r"(?:delete|remove|cancel|erase|drop|apag(?:ar|ue|a)|delet(?:ar|e)|remov(?:er|a|e)"
    r"|cancel(?:ar|e|a)|exclu(?:ir|a|i))\b\s*(.*)$",
    re.IGNORECASE,
)
_FILLER_WORDS = {
    "the", "my", "a", "an", "that", "this", "reminder", "reminders", "about", "for", "of", "to",
    "o", "os", "as", "meu", "minha", "meus", "lembrete", "lembretes", "sobre", "do", "da",
    "de", "para", "please",
}

_QUERY_PATTERNS = [
    re.compile(p)
    for p in (
        r"\b(?:what|which)\b.*\b(?:reminders?|have|scheduled|planned|got)\b",
        r"\b(?:list|show)\b.*\breminders?\b",
        r"\bmy reminders\b",
        r"\bdo i have\b",
        r"\b(?:o que|quais|qual)\b.*\b(?:tenho|lembretes?|agendado)\b",
        r"\bmeus lembretes\b",
        r"\btenho (?:algo|alguma coisa|lembretes?)\b",
    )
]

_WEEKDAY_WORDS = (
    r"monday|tuesday|wednesday|thursday|friday|saturday|sunday"
    r"|segunda(?:-feira)?|ter[cç]a(?:-feira)?|quarta(?:-feira)?|quinta(?:-feira)?"
    r"|sexta(?:-feira)?|s[aá]bado|domingo"
)
_MONTH_WORDS = "|".join(sorted(MONTHS, key=len, reverse=True))
_MONTH_EN_WORDS = "|".join(sorted(MONTHS_EN, key=len, reverse=True))

_LEAD_PHRASE_RE = re.compile(
    rf"\b((?:\d+(?:[.,]\d+)?\s*|(?:an?|one|uma?|half\s+an?|meia)\s+)(?:{UNIT_PATTERN})"
    r"|\d+\s*h\s*\d+\s*(?:m|min|mins|minutes?|minutos?)?)\s+"
    r"(?:before|earlier|in advance|antes|de anteced[eê]ncia)\b",
    re.IGNORECASE,
)

_MOMENT_STRIP_RES = [
    re.compile(p, re.IGNORECASE)
    for p in (
        rf"\b(?:in|em|daqui(?:\s+a)?|within)\s+(?:\d+\s*|(?:an?|one|uma?|half\s+an?|meia)\s+)(?:{UNIT_PATTERN})\b",
        r"\b\d{4}-\d{1,2}-\d{1,2}\b",
        r"\b\d{1,2}/\d{1,2}(?:/\d{2,4})?\b",
        rf"\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:de\s+)?(?:{_MONTH_WORDS})\.?(?:,?\s+(?:de\s+)?\d{{4}})?\b",
        rf"\b(?:{_MONTH_EN_WORDS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?\b(?:,?\s+\d{{4}}\b)?",
        r"\b\d{1,2}:\d{2}\s*(?:[ap]\.?m\b\.?)?",
        r"\b\d{1,2}\s*[ap]\.?m\b\.?",
        r"\b\d{1,2}h(?:\d{2})?\b",
        r"\b(?:noon|midnight|meio[- ]dia|meia[- ]noite)\b",
        r"\b(?:day after tomorrow|depois de amanh[aã]|tomorrow|amanh[aã]|tonight|today|hoje)\b",
        rf"\b(?:(?:next|this|on|pr[oó]xim[oa]|nest[ea])\s+)?(?:{_WEEKDAY_WORDS})\b",
    )
]
_DANGLING_RE = re.compile(
    r"(?:^|\s)(?:at|on|by|for|and|to|de|do|da|no|na|[aà]s?|para|that|que|,)(?=\s*$)", re.IGNORECASE
)
_LEADING_RE = re.compile(r"^\s*(?:to|about|that|de|que|para|:|-)\s+", re.IGNORECASE)


def clean_text(raw: str) -> Optional[str]:
    """The reminder subject left after dropping command words and time phrases."""
    text = _CREATE_PREFIX_RE.sub(" ", raw, count=1)
    text = _LEAD_PHRASE_RE.sub(" ", text)
    for pattern in _MOMENT_STRIP_RES:
        text = pattern.sub(" ", text)
    text = " ".join(text.split()).strip(" ,.;:-!?")
    previous = None
    while previous != text:
        previous = text
        text = _DANGLING_RE.sub("", text).strip(" ,.;:-!?")
        text = _LEADING_RE.sub("", text).strip(" ,.;:-!?")
    return text or None


def _delete_keyword(rest: str) -> str:
    words = rest.strip(" ?!.,").split()
    while words and words[0].lower() in _FILLER_WORDS:
        words.pop(0)
    while words and words[-1].lower() in _FILLER_WORDS:
        words.pop()
    return " ".join(words)


def extract_moment(text: str, now: datetime, tz: ZoneInfo) -> CreateReply:
    lead_match = _LEAD_PHRASE_RE.search(text)
    scrubbed = _LEAD_PHRASE_RE.sub(" ", text) if lead_match else text
    moment = parse_moment(scrubbed, now, tz)
    return CreateReply(moment=moment, confidence="medium" if moment else "low")


def extract(
    text: str,
    now: Optional[datetime] = None,
    tz: Optional[ZoneInfo] = None,
    scope: ExtractionScope = ExtractionScope.FULL,
) -> ExtractorReply:
    """Deterministic extraction; never raises on user input."""
    now = now or datetime.now(timezone.utc)
    tz = tz or get_timezone()

    if scope == ExtractionScope.MOMENT:
        return extract_moment(text, now, tz)

    t = normalize(text)
    if not t:
        return NoneReply()

    delete = _DELETE_RE.match(text)
    if delete:
        keyword = _delete_keyword(delete.group(1))
        if keyword:
            return DeleteReply(keyword=keyword, confidence="medium")
        return NoneReply()

    if any(p.search(t) for p in _QUERY_PATTERNS) and not _CREATE_PREFIX_RE.match(text):
        return QueryReply(period=t, confidence="medium")

    lead_minutes = None
    lead_match = _LEAD_PHRASE_RE.search(text)
    if lead_match:
        lead_minutes = parse_lead_minutes(lead_match.group(1))
    scrubbed = _LEAD_PHRASE_RE.sub(" ", text) if lead_match else text
    moment = parse_moment(scrubbed, now, tz)
    hinted = bool(_CREATE_HINT_RE.search(text))

    if not hinted and moment is None:
        return NoneReply()

    return CreateReply(
        text=clean_text(text),
        moment=moment,
        lead_minutes=lead_minutes,
        confidence="medium" if hinted or moment else "low",
    )

"""
LLM-powered slot extractor.

Turns one inbound chat message (plus the recent dialog history) into an
``ExtractorReply``: create / query / delete / none.

The OpenAI call is forced onto the ``extract_slots`` tool, retried on
transport errors and bounded by ``OPENAI_TIMEOUT``. Whenever the model is
unavailable the deterministic offline parser answers instead, so callers
never see an extractor failure.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import openai
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessageParam
from pydantic import ValidationError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_random_exponential,
    retry_if_exception_type,
)

from config import settings
from app.services import offline_parser
from app.types.conversation import ConversationContext
from app.types.parser_contract import (
    CreateReply,
    ExtractionScope,
    ExtractorReply,
    NoneReply,
    extractor_reply_adapter,
)
from app.utils.dates import get_timezone

_LOGGER = logging.getLogger(__name__)


class ExtractorUnavailable(Exception):
    """The LLM could not be reached or did not answer in time."""


# ──────────────────────────────────────────────────────────────────────────
# Prompts & function-tool definition
# ──────────────────────────────────────────────────────────────────────────

_SYSTEM_PROMPT = (
    "You are the intake assistant of an SMS reminder service. "
    "Read the user's latest message (English or Portuguese) and call `extract_slots`. "
    "Intents: `create` (the user wants a new reminder or is answering a question "
    "about one), `query` (the user asks which reminders exist for a period), "
    "`delete` (the user wants to cancel an existing reminder; put the words that "
    "identify it in `keyword`), `none` (anything else). "
    "For `create`, `text` is the thing to remember without any date/time words, "
    "`moment` is an ISO-8601 timestamp WITH offset in the user's timezone, and "
    "`lead_minutes` is only set when the user says how long before to notify. "
    "Leave a field out rather than guessing. "
    "Set `confidence` to high only when every field you return is explicit in the message."
    "\n\n"
    "# Example\n"
    "User says: remind me to call mom tomorrow at 3pm\n"
    "Tool arguments:\n"
    "{\"intent\": \"create\", \"text\": \"call mom\", "
    "\"moment\": \"2026-10-19T15:00:00-07:00\", \"confidence\": \"high\"}\n"
)

_MOMENT_ONLY_PROMPT = (
    "The assistant just asked the user WHEN the reminder should happen. "
    "Only resolve `moment`; use intent `create` and omit every other field."
)

_TOOL_NAME = "extract_slots"

_FUNCTION_DEF = {
    "name": _TOOL_NAME,
    "description": "Report the intent and slots found in the user's latest message.",
    "parameters": {
        "type": "object",
        "properties": {
            "intent": {"type": "string", "enum": ["create", "query", "delete", "none"]},
            "text": {"type": "string"},
            "moment": {"type": "string", "description": "ISO-8601 with UTC offset"},
            "lead_minutes": {"type": "integer", "minimum": 0},
            "period": {"type": "string"},
            "keyword": {"type": "string"},
            "confidence": {"type": "string", "enum": ["high", "medium", "low"]},
        },
        "required": ["intent", "confidence"],
        "additionalProperties": False,
    },
}

FUNCTIONS = [{"type": "function", "function": _FUNCTION_DEF}]


# ──────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────


def _build_messages(
    text: str,
    context: Optional[ConversationContext],
    now: datetime,
    tz: ZoneInfo,
    scope: ExtractionScope,
) -> List[ChatCompletionMessageParam]:
    local_now = now.astimezone(tz)
    system = (
        f"{_SYSTEM_PROMPT}\n# Now\n{local_now.isoformat(timespec='minutes')} "
        f"({local_now.strftime('%A')}, timezone {tz.key})"
    )
    if scope == ExtractionScope.MOMENT:
        system += f"\n\n{_MOMENT_ONLY_PROMPT}"

    messages: List[ChatCompletionMessageParam] = [{"role": "system", "content": system}]
    if context is not None:
        for turn in context.history:
            messages.append({"role": turn.role, "content": turn.text[:500]})
    messages.append({"role": "user", "content": text[:500]})
    return messages


# Retry only on transport / rate-limit / backend errors
RETRY_ERRORS = (
    openai.APIStatusError,
    openai.APIConnectionError,
    openai.RateLimitError,
    openai.APITimeoutError,
)


@retry(
    wait=wait_random_exponential(multiplier=1, max=5),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(RETRY_ERRORS),
    reraise=True,
)
async def _call_openai(
    client: AsyncOpenAI, model: str, messages: List[ChatCompletionMessageParam], timeout: float
) -> str:
    """One forced tool call; returns the raw JSON arguments."""
    response = await client.chat.completions.create(
        model=model,
        messages=messages,
        tools=FUNCTIONS,
        tool_choice={"type": "function", "function": {"name": _TOOL_NAME}},
        timeout=timeout,
    )
    msg = response.choices[0].message
    if msg.tool_calls:
        return msg.tool_calls[0].function.arguments
    # No tool call; assume the assistant answered with bare JSON
    return msg.content or ""


def _empty_reply(scope: ExtractionScope) -> ExtractorReply:
    if scope == ExtractionScope.MOMENT:
        return CreateReply(method="llm")
    return NoneReply(method="llm")


def _to_reply(raw: str, scope: ExtractionScope, tz: ZoneInfo) -> ExtractorReply:
    """Validate the model's arguments; invalid output counts as no information."""
    try:
        data: Dict[str, Any] = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        _LOGGER.warning("LLM returned non-JSON arguments: %r", raw[:200])
        return _empty_reply(scope)
    if not isinstance(data, dict):
        return _empty_reply(scope)

    data = {k: v for k, v in data.items() if v not in (None, "")}
    data["method"] = "llm"

    moment = data.get("moment")
    if isinstance(moment, str):
        try:
            parsed = datetime.fromisoformat(moment.replace("Z", "+00:00"))
        except ValueError:
            data.pop("moment")
        else:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=tz)
            data["moment"] = parsed.astimezone(timezone.utc)

    if scope == ExtractionScope.MOMENT:
        data = {
            "intent": "create",
            "moment": data.get("moment"),
            "confidence": data.get("confidence", "low"),
            "method": "llm",
        }

    try:
        return extractor_reply_adapter.validate_python(data)
    except ValidationError as exc:
        _LOGGER.warning("LLM reply failed validation: %s", exc.errors()[:3])
        return _empty_reply(scope)


# ──────────────────────────────────────────────────────────────────────────
# Public entry-point
# ──────────────────────────────────────────────────────────────────────────


class ParserAgent:
    """Slot extractor: OpenAI first, offline parser as fallback."""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        if client is None and settings.OPENAI_API_KEY:
            client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.client = client
        self.model = model or settings.OPENAI_MODEL
        self.timeout = timeout if timeout is not None else settings.OPENAI_TIMEOUT

    async def extract(
        self,
        text: str,
        context: Optional[ConversationContext] = None,
        scope: ExtractionScope = ExtractionScope.FULL,
        now: Optional[datetime] = None,
        tz: Optional[ZoneInfo] = None,
    ) -> ExtractorReply:
        now = now or datetime.now(timezone.utc)
        tz = tz or get_timezone()
        try:
            reply = await self._extract_llm(text, context, scope, now, tz)
            _LOGGER.info("LLM extraction: intent=%s confidence=%s", reply.intent, reply.confidence)
            return reply
        except ExtractorUnavailable as exc:
            _LOGGER.warning("Extractor unavailable, using offline parser: %s", exc)
        return offline_parser.extract(text, now, tz, scope)

    async def _extract_llm(
        self,
        text: str,
        context: Optional[ConversationContext],
        scope: ExtractionScope,
        now: datetime,
        tz: ZoneInfo,
    ) -> ExtractorReply:
        if self.client is None:
            raise ExtractorUnavailable("OPENAI_API_KEY not set")
        messages = _build_messages(text, context, now, tz, scope)
        try:
            raw = await asyncio.wait_for(
                _call_openai(self.client, self.model, messages, self.timeout),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExtractorUnavailable(f"no answer within {self.timeout}s") from exc
        except openai.OpenAIError as exc:
            raise ExtractorUnavailable(str(exc)) from exc
        return _to_reply(raw, scope, tz)

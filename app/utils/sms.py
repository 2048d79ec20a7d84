"""Outbound SMS through Telnyx.

Without ``TELNYX_API_KEY``/``TELNYX_FROM_NUMBER`` the messenger runs in dev
mode: messages are logged and a ``dev-<uuid>`` delivery id is returned.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional
from uuid import uuid4

import telnyx

from config import settings
from app.utils.dates import format_moment, get_timezone

_LOGGER = logging.getLogger(__name__)

FROM_NUM = settings.TELNYX_FROM_NUMBER
TELNYX_API_KEY = settings.TELNYX_API_KEY
if TELNYX_API_KEY:
    telnyx.api_key = TELNYX_API_KEY

WELCOME_TEXT = (
    "Hi! I'm your reminder assistant. Tell me what to remember and when, "
    "e.g. \"remind me to call mom tomorrow at 3pm\". "
    "You can also ask \"what do I have this week?\" or say \"delete dentist\". "
    "Send /help for the command list."
)


class MessagingError(Exception):
    """Delivery through the messaging channel failed or timed out."""


def send_sms(to: str, body: str) -> str:
    """Blocking send; returns the provider message id."""
    if not TELNYX_API_KEY or not FROM_NUM:
        delivery_id = f"dev-{uuid4()}"
        _LOGGER.info("[SMS] DEV mode: would send to %s: %s (%s)", to, body, delivery_id)
        return delivery_id
    message = telnyx.Message.create(from_=FROM_NUM, to=to, text=body)
    return str(getattr(message, "id", "") or uuid4())


class SmsMessenger:
    """Async facade over :func:`send_sms` used by the chatbot and scheduler."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.MESSAGING_TIMEOUT

    async def send_text(self, to: str, body: str) -> str:
        try:
            return await asyncio.wait_for(asyncio.to_thread(send_sms, to, body), self.timeout)
        except asyncio.TimeoutError as exc:
            raise MessagingError(f"send to {to} timed out after {self.timeout}s") from exc
        except Exception as exc:
            raise MessagingError(f"send to {to} failed: {exc}") from exc

    async def send_reminder_notice(
        self, to: str, reminder_text: str, target_at: datetime, lead_minutes: int = 0, tz_name: Optional[str] = None
    ) -> str:
        return await self.send_text(to, format_reminder_notice(reminder_text, target_at, lead_minutes, tz_name))

    async def send_welcome(self, to: str) -> str:
        return await self.send_text(to, WELCOME_TEXT)


def format_reminder_notice(
    reminder_text: str, target_at: datetime, lead_minutes: int = 0, tz_name: Optional[str] = None
) -> str:
    when = format_moment(target_at, get_timezone(tz_name))
    if lead_minutes:
        return f"⏰ Reminder: {reminder_text}\nComing up at {when}."
    return f"⏰ Reminder: {reminder_text}\nNow ({when})."

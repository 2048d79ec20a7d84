"""Reminder delivery sweep.

Each sweep looks at pending reminders whose ``notify_at`` fell inside the
back window, claims every one with a conditional ``pending -> sent`` update
and only then attempts delivery. A lost claim means another sweep owns the
reminder, so each reminder gets at most one delivery attempt. Reminders
older than the back window are never picked up.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import db
from config import settings
from app.utils.sms import MessagingError, SmsMessenger

_LOGGER = logging.getLogger(__name__)


class ReminderScheduler:
    def __init__(
        self,
        messenger: Optional[SmsMessenger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        back_window: Optional[timedelta] = None,
        batch_limit: Optional[int] = None,
    ):
        self.messenger = messenger if messenger is not None else SmsMessenger()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.back_window = (
            back_window if back_window is not None
            else timedelta(minutes=settings.SCHEDULER_BACK_WINDOW_MINUTES)
        )
        self.batch_limit = batch_limit if batch_limit is not None else settings.SCHEDULER_BATCH_LIMIT

    async def run_sweep(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Deliver what is due; returns counts per outcome."""
        now = now or self.clock()
        summary = {"due": 0, "claimed": 0, "delivered": 0, "failed": 0, "skipped": 0}

        try:
            due = await db.fetch_due_reminders(now, back_window=self.back_window, limit=self.batch_limit)
        except Exception:
            _LOGGER.exception("Due-reminder scan failed; retrying next tick")
            return summary

        summary["due"] = len(due)
        for reminder in due:
            try:
                await self._process(reminder, summary)
            except Exception:
                _LOGGER.exception("Processing reminder %s failed", reminder.reminder_id)
                summary["failed"] += 1

        if due:
            _LOGGER.info("Reminder sweep at %s: %s", now.isoformat(), summary)
        return summary

    async def _process(self, reminder, summary: Dict[str, int]) -> None:
        user = await db.get_user(reminder.user_id)
        if user is None:
            if await db.mark_reminder_failed(reminder.reminder_id):
                _LOGGER.warning("Reminder %s has no owner; marked failed", reminder.reminder_id)
                summary["failed"] += 1
            else:
                summary["skipped"] += 1
            return

        if not await db.claim_reminder(reminder.reminder_id):
            # Another sweep got there first
            summary["skipped"] += 1
            return
        summary["claimed"] += 1

        notification = await db.create_notification(reminder.reminder_id, reminder.channel)
        try:
            delivery_id = await self.messenger.send_reminder_notice(
                user.phone, reminder.reminder_text, reminder.target_at, reminder.lead_minutes
            )
        except MessagingError as exc:
            await db.mark_notification_failed(notification.notification_id, str(exc))
            _LOGGER.error("Reminder %s delivery failed: %s", reminder.reminder_id, exc)
            summary["failed"] += 1
            return

        await db.mark_notification_sent(notification.notification_id, delivery_id)
        _LOGGER.info("Reminder %s delivered (%s)", reminder.reminder_id, delivery_id)
        summary["delivered"] += 1

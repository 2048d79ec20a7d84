"""Reminder, notification and plan value types shared by the store, the
chatbot and the scheduler."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, field_validator, model_validator


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {ReminderStatus.SENT, ReminderStatus.FAILED, ReminderStatus.CANCELLED}
)


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class PlanType(str, Enum):
    FREE = "free"
    PAID = "paid"


def compute_notify_at(target_at: datetime, lead_minutes: int) -> datetime:
    """Moment the notice goes out: ``lead_minutes`` before the event."""
    return target_at - timedelta(minutes=lead_minutes)


class ReminderDraft(BaseModel):
    """A fully-filled reminder, ready to be persisted."""

    user_id: str
    reminder_text: str
    target_at: datetime
    lead_minutes: int = 0
    channel: str = "sms"

    @field_validator("user_id", "reminder_text")
    def _non_empty(cls, v):  # noqa: N805
        if not isinstance(v, str) or not v.strip():
            raise ValueError("must be a non-empty string")
        return v.strip()

    @field_validator("target_at")
    def _aware(cls, v):  # noqa: N805
        if v.tzinfo is None:
            raise ValueError("target_at must be timezone-aware")
        return v

    @field_validator("lead_minutes")
    def _non_negative(cls, v):  # noqa: N805
        if v < 0:
            raise ValueError("lead_minutes must be >= 0")
        return v

    @model_validator(mode="after")
    def _channel_is_sms(self):
        if self.channel != "sms":
            raise ValueError("channel must be 'sms'")
        return self

    @property
    def notify_at(self) -> datetime:
        return compute_notify_at(self.target_at, self.lead_minutes)

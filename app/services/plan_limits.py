"""Per-plan quotas: concurrently pending reminders, reminders created per
calendar month and the longest allowed lead time.

``None`` means unlimited. Every check is read-then-decide; the chatbot runs
``can_create`` again right before persisting.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from zoneinfo import ZoneInfo

import db
from app.types.reminder_contract import PlanType, ReminderStatus
from app.utils.dates import get_timezone

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanLimits:
    max_active: Optional[int]
    max_per_month: Optional[int]
    max_lead_minutes: Optional[int]


PLAN_LIMITS: Dict[PlanType, PlanLimits] = {
    PlanType.FREE: PlanLimits(max_active=5, max_per_month=10, max_lead_minutes=60),
    PlanType.PAID: PlanLimits(max_active=None, max_per_month=None, max_lead_minutes=None),
}

USAGE_WARNING_RATIO = 0.8


@dataclass
class CreateCheck:
    allowed: bool
    reason: Optional[str] = None


@dataclass
class LeadTimeCheck:
    valid: bool
    reason: Optional[str] = None


@dataclass
class UsageStats:
    plan_type: PlanType
    limits: PlanLimits
    active: int
    this_month: int
    can_create: bool
    reason: Optional[str] = None


def month_start(now: datetime, tz: Optional[ZoneInfo] = None) -> datetime:
    """First instant of the user's current calendar month, in UTC."""
    local = now.astimezone(tz or get_timezone())
    first = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return first.astimezone(timezone.utc)


async def _plan_of(user_id: str) -> Optional[PlanType]:
    user = await db.get_user(user_id)
    if user is None:
        return None
    return PlanType(user.plan_type)


async def can_create(user_id: str, now: Optional[datetime] = None) -> CreateCheck:
    plan = await _plan_of(user_id)
    if plan is None:
        return CreateCheck(False, "I couldn't find your account.")
    limits = PLAN_LIMITS[plan]

    if limits.max_active is not None:
        active = await db.count_reminders(user_id, status=ReminderStatus.PENDING)
        if active >= limits.max_active:
            return CreateCheck(
                False,
                f"You already have {limits.max_active} active reminders, the limit of the "
                f"{plan.value} plan. Wait for one of them to go out or upgrade to the paid plan.",
            )

    if limits.max_per_month is not None:
        since = month_start(now or datetime.now(timezone.utc))
        created = await db.count_reminders(user_id, created_since=since)
        if created >= limits.max_per_month:
            return CreateCheck(
                False,
                f"You reached the {plan.value} plan limit of {limits.max_per_month} reminders "
                "per month. It resets next month, or upgrade to the paid plan.",
            )

    return CreateCheck(True)


async def validate_lead_time(user_id: str, minutes: int) -> LeadTimeCheck:
    plan = await _plan_of(user_id)
    if plan is None:
        return LeadTimeCheck(False, "I couldn't find your account.")
    limits = PLAN_LIMITS[plan]
    if limits.max_lead_minutes is not None and minutes > limits.max_lead_minutes:
        return LeadTimeCheck(
            False,
            f"The {plan.value} plan allows notices at most {limits.max_lead_minutes} minutes "
            "ahead. Pick a shorter lead time or upgrade to the paid plan.",
        )
    return LeadTimeCheck(True)


async def get_usage(user_id: str, now: Optional[datetime] = None) -> Optional[UsageStats]:
    plan = await _plan_of(user_id)
    if plan is None:
        return None
    active = await db.count_reminders(user_id, status=ReminderStatus.PENDING)
    this_month = await db.count_reminders(
        user_id, created_since=month_start(now or datetime.now(timezone.utc))
    )
    check = await can_create(user_id, now)
    return UsageStats(
        plan_type=plan,
        limits=PLAN_LIMITS[plan],
        active=active,
        this_month=this_month,
        can_create=check.allowed,
        reason=check.reason,
    )


def _fraction(used: int, limit: Optional[int]) -> str:
    return f"{used} (unlimited)" if limit is None else f"{used}/{limit}"


async def format_usage_message(user_id: str, now: Optional[datetime] = None) -> str:
    usage = await get_usage(user_id, now)
    if usage is None:
        return "Sorry, I couldn't load your plan details."

    limits = usage.limits
    lines = [
        f"Your plan: {usage.plan_type.value.upper()}",
        f"Reminders this month: {_fraction(usage.this_month, limits.max_per_month)}",
        f"Active reminders: {_fraction(usage.active, limits.max_active)}",
        "Lead time: unlimited"
        if limits.max_lead_minutes is None
        else f"Lead time: up to {limits.max_lead_minutes} minutes",
    ]

    if limits.max_per_month:
        used = usage.this_month / limits.max_per_month
        if used >= USAGE_WARNING_RATIO:
            lines.append("")
            lines.append(f"Heads up: you've used {used * 100:.0f}% of your monthly limit.")

    if usage.plan_type == PlanType.FREE:
        lines.append("")
        lines.append("Upgrade to PAID for unlimited reminders and no lead-time cap.")

    return "\n".join(lines)

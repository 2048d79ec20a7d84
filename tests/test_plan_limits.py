from datetime import datetime, timedelta, timezone

import pytest

import db
from app.services import plan_limits
from app.types.reminder_contract import PlanType, ReminderDraft
from conftest import NOW, TZ

pytestmark = pytest.mark.usefixtures("database")


async def _fill(user_id, count):
    ids = []
    for i in range(count):
        reminder = await db.insert_reminder(
            ReminderDraft(
                user_id=user_id,
                reminder_text=f"task {i}",
                target_at=NOW + timedelta(days=1, minutes=i),
            )
        )
        ids.append(reminder.reminder_id)
    return ids


@pytest.mark.asyncio
async def test_free_plan_active_limit():
    user = await db.get_or_create_user("+15550001")
    await _fill(user.user_id, 4)
    assert (await plan_limits.can_create(user.user_id, NOW)).allowed

    await _fill(user.user_id, 1)
    check = await plan_limits.can_create(user.user_id, NOW)
    assert not check.allowed
    assert "5 active reminders" in check.reason


@pytest.mark.asyncio
async def test_free_plan_monthly_limit_counts_cancelled_too():
    user = await db.get_or_create_user("+15550001")
    ids = await _fill(user.user_id, 10)
    for reminder_id in ids[:6]:
        await db.cancel_reminder(reminder_id)

    check = await plan_limits.can_create(user.user_id, NOW)
    assert not check.allowed
    assert "10 reminders per month" in check.reason


@pytest.mark.asyncio
async def test_paid_plan_is_unlimited():
    user = await db.get_or_create_user("+15550001", plan_type=PlanType.PAID)
    await _fill(user.user_id, 12)
    assert (await plan_limits.can_create(user.user_id, NOW)).allowed
    assert (await plan_limits.validate_lead_time(user.user_id, 24 * 60)).valid


@pytest.mark.asyncio
async def test_lead_time_ceiling():
    user = await db.get_or_create_user("+15550001")
    assert (await plan_limits.validate_lead_time(user.user_id, 0)).valid
    assert (await plan_limits.validate_lead_time(user.user_id, 60)).valid
    check = await plan_limits.validate_lead_time(user.user_id, 61)
    assert not check.valid
    assert "60 minutes" in check.reason


@pytest.mark.asyncio
async def test_unknown_user_is_refused():
    assert not (await plan_limits.can_create("missing", NOW)).allowed
    assert not (await plan_limits.validate_lead_time("missing", 5)).valid
    assert await plan_limits.get_usage("missing", NOW) is None


@pytest.mark.asyncio
async def test_usage_message_warns_near_monthly_cap():
    user = await db.get_or_create_user("+15550001")
    ids = await _fill(user.user_id, 8)
    for reminder_id in ids[:4]:
        await db.cancel_reminder(reminder_id)

    usage = await plan_limits.get_usage(user.user_id, NOW)
    assert usage.active == 4
    assert usage.this_month == 8
    assert usage.can_create

    message = await plan_limits.format_usage_message(user.user_id, NOW)
    assert "Your plan: FREE" in message
    assert "Reminders this month: 8/10" in message
    assert "Active reminders: 4/5" in message
    assert "80%" in message


@pytest.mark.asyncio
async def test_usage_message_for_paid_plan():
    user = await db.get_or_create_user("+15550001", plan_type=PlanType.PAID)
    message = await plan_limits.format_usage_message(user.user_id, NOW)
    assert "Reminders this month: 0 (unlimited)" in message
    assert "Lead time: unlimited" in message
    assert "Upgrade" not in message


def test_month_start_is_local_midnight():
    assert plan_limits.month_start(NOW, TZ) == datetime(2026, 10, 1, 7, 0, tzinfo=timezone.utc)

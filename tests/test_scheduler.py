import asyncio
from datetime import timedelta

import pytest

import db
from app.services.scheduler import ReminderScheduler
from app.types.reminder_contract import NotificationStatus, ReminderDraft, ReminderStatus
from conftest import NOW, FakeMessenger

pytestmark = pytest.mark.usefixtures("database")

PHONE = "+15550002"


async def _due(text="take pills", offset=timedelta(minutes=-1), lead=0, user_id=None):
    if user_id is None:
        user_id = (await db.get_or_create_user(PHONE)).user_id
    return await db.insert_reminder(
        ReminderDraft(
            user_id=user_id,
            reminder_text=text,
            target_at=NOW + offset + timedelta(minutes=lead),
            lead_minutes=lead,
        )
    )


@pytest.mark.asyncio
async def test_due_reminder_is_delivered_once(clock, messenger):
    reminder = await _due(lead=10)
    scheduler = ReminderScheduler(messenger=messenger, clock=clock)

    summary = await scheduler.run_sweep()
    assert summary["delivered"] == 1
    assert messenger.notices == [(PHONE, "take pills", reminder.target_at, 10)]
    assert (await db.get_reminder(reminder.reminder_id)).status == ReminderStatus.SENT.value

    notifications = await db.list_notifications(reminder.reminder_id)
    assert [n.status for n in notifications] == [NotificationStatus.SENT.value]
    assert notifications[0].delivery_id == "fake-notice-1"

    again = await scheduler.run_sweep()
    assert again["due"] == 0
    assert len(messenger.notices) == 1


@pytest.mark.asyncio
async def test_concurrent_sweeps_deliver_once(clock, messenger):
    reminder = await _due()
    first = ReminderScheduler(messenger=messenger, clock=clock)
    second = ReminderScheduler(messenger=messenger, clock=clock)

    summaries = await asyncio.gather(first.run_sweep(), second.run_sweep())
    assert sum(s["delivered"] for s in summaries) == 1
    assert len(messenger.notices) == 1
    assert len(await db.list_notifications(reminder.reminder_id)) == 1


@pytest.mark.asyncio
async def test_future_and_stale_reminders_are_left_alone(clock, messenger):
    upcoming = await _due(offset=timedelta(minutes=2))
    stale = await _due(offset=timedelta(minutes=-6))
    scheduler = ReminderScheduler(messenger=messenger, clock=clock)

    summary = await scheduler.run_sweep()
    assert summary["due"] == 0
    assert messenger.notices == []
    assert (await db.get_reminder(stale.reminder_id)).status == ReminderStatus.PENDING.value

    clock.advance(minutes=2)
    summary = await scheduler.run_sweep()
    assert summary["delivered"] == 1
    assert (await db.get_reminder(upcoming.reminder_id)).status == ReminderStatus.SENT.value
    assert (await db.get_reminder(stale.reminder_id)).status == ReminderStatus.PENDING.value


@pytest.mark.asyncio
async def test_failed_delivery_keeps_claim(clock):
    reminder = await _due()
    scheduler = ReminderScheduler(messenger=FakeMessenger(fail=True), clock=clock)

    summary = await scheduler.run_sweep()
    assert summary["claimed"] == 1
    assert summary["failed"] == 1
    assert (await db.get_reminder(reminder.reminder_id)).status == ReminderStatus.SENT.value

    notifications = await db.list_notifications(reminder.reminder_id)
    assert notifications[0].status == NotificationStatus.FAILED.value
    assert "channel down" in notifications[0].error

    retry = await scheduler.run_sweep()
    assert retry["due"] == 0


@pytest.mark.asyncio
async def test_reminder_without_owner_is_marked_failed(clock, messenger):
    orphan = await _due(user_id="ghost")
    summary = await ReminderScheduler(messenger=messenger, clock=clock).run_sweep()

    assert summary["failed"] == 1
    assert messenger.notices == []
    assert (await db.get_reminder(orphan.reminder_id)).status == ReminderStatus.FAILED.value


@pytest.mark.asyncio
async def test_zero_back_window_is_respected(clock, messenger):
    await _due()
    scheduler = ReminderScheduler(messenger=messenger, clock=clock, back_window=timedelta(0))
    assert scheduler.back_window == timedelta(0)

    summary = await scheduler.run_sweep()
    assert summary["due"] == 0
    assert messenger.notices == []

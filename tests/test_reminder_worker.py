import asyncio
from datetime import timedelta

import db
from app.services.scheduler import ReminderScheduler
from app.types.reminder_contract import ReminderDraft, ReminderStatus
from app.workers import reminder as reminder_worker
from conftest import NOW, FakeClock, FakeMessenger


def _run(coro):
    async def _wrapped():
        try:
            return await coro
        finally:
            await db.dispose_engine()

    return asyncio.run(_wrapped())


async def _seed_due():
    await db.create_all()
    user = await db.get_or_create_user("+15550003")
    return await db.insert_reminder(
        ReminderDraft(user_id=user.user_id, reminder_text="feed the cat", target_at=NOW - timedelta(minutes=1))
    )


def test_dispatch_due_runs_one_sweep(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'worker.db'}")
    reminder = _run(_seed_due())

    messenger = FakeMessenger()
    monkeypatch.setattr(
        reminder_worker,
        "ReminderScheduler",
        lambda: ReminderScheduler(messenger=messenger, clock=FakeClock()),
    )

    summary = reminder_worker.dispatch_due.apply().get()
    assert summary["delivered"] == 1
    assert messenger.notices[0][1] == "feed the cat"

    stored = _run(db.get_reminder(reminder.reminder_id))
    assert stored.status == ReminderStatus.SENT.value


def test_cron_scan_reports_summary(tmp_path, monkeypatch, capsys):
    from app.scripts import scan_due_reminders

    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cron.db'}")
    _run(_seed_due())

    messenger = FakeMessenger()
    monkeypatch.setattr(
        scan_due_reminders,
        "ReminderScheduler",
        lambda: ReminderScheduler(messenger=messenger, clock=FakeClock()),
    )

    summary = asyncio.run(scan_due_reminders.main())
    assert summary["delivered"] == 1
    assert "[CRON] scan_due_reminders: due=1 delivered=1" in capsys.readouterr().out

"""Periodic scanner to send due reminders without a Celery worker.
Run via a platform cron every minute:
    python -m app.scripts.scan_due_reminders
"""

from __future__ import annotations

import asyncio
import logging

from app.services.scheduler import ReminderScheduler
import db


async def main() -> dict:
    try:
        summary = await ReminderScheduler().run_sweep()
    finally:
        await db.dispose_engine()
    print(
        f"[CRON] scan_due_reminders: due={summary['due']} delivered={summary['delivered']} "
        f"failed={summary['failed']} skipped={summary['skipped']}"
    )
    return summary


if __name__ == "__main__":  # pragma: no cover
    logging.basicConfig(level=logging.INFO)
    print("[CRON] scan_due_reminders: job started")
    try:
        asyncio.run(main())
        print("[CRON] scan_due_reminders: job completed successfully")
    except Exception as e:
        print(f"[CRON] scan_due_reminders: job failed: {e}")

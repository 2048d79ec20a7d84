"""Celery task wrapping one reminder sweep."""

from __future__ import annotations

import asyncio

from app.celery_app import celery_app
from app.services.scheduler import ReminderScheduler
import db


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

async def _sweep_once() -> dict:
    try:
        return await ReminderScheduler().run_sweep()
    finally:
        # Each task runs in a fresh event loop; pooled connections can't be reused
        await db.dispose_engine()


@celery_app.task(name="app.workers.reminder.dispatch_due", bind=True)
def dispatch_due(self):  # noqa: D401
    """Claim and deliver every reminder that is due now."""
    return asyncio.run(_sweep_once())

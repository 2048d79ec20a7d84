"""Celery application instance shared across the backend.

Start a worker and the beat scheduler with:
    celery -A app.celery_app worker -B -Q reminder -l info --concurrency=2
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("remindme_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.task_default_retry_delay = 30  # seconds

celery_app.conf.task_routes = {
    "app.workers.reminder.dispatch_due": {"queue": "reminder"},
}

# Beat schedule: sweep due reminders every minute
celery_app.conf.beat_schedule = {
    "dispatch-due-reminders": {
        "task": "app.workers.reminder.dispatch_due",
        "schedule": float(settings.SCHEDULER_INTERVAL_SECONDS),
    }
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401

from .db import (
    Base,
    Notification,
    Reminder,
    User,
    cancel_reminder,
    claim_reminder,
    claim_welcome,
    count_reminders,
    create_all,
    create_notification,
    dispose_engine,
    fetch_due_reminders,
    get_or_create_user,
    get_reminder,
    get_user,
    get_user_by_phone,
    insert_reminder,
    list_notifications,
    list_pending_reminders,
    list_reminders_between,
    mark_notification_failed,
    mark_notification_sent,
    mark_reminder_failed,
    search_reminders,
    set_plan,
    utcnow,
)  # noqa: F401

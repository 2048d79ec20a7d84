"""
Async DB helpers for users, reminders and delivery notifications.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.

Every status change on a reminder is a conditional UPDATE guarded by
``status = 'pending'``; the affected row count tells the caller whether it
won the transition.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Iterable, Sequence
from uuid import uuid4

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, String, Text, TypeDecorator, func, or_, select, update
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.types.reminder_contract import (
    NotificationStatus,
    PlanType,
    ReminderDraft,
    ReminderStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend.

    Naive values are rejected on the way in; values read back from backends
    that drop the offset (SQLite) are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("datetime values must be timezone-aware")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith(("postgres://", "postgresql://")):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1).replace(
            "postgresql://", "postgresql+asyncpg://", 1
        )
    return url

def get_engine():
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5, pool_pre_ping=True)
    return _engine

def get_session() -> AsyncGenerator[AsyncSession, None]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async def _session_scope():
        async with _session_maker() as session:
            yield session
    return _session_scope()

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    user_id:    Mapped[str]      = mapped_column(String(36), primary_key=True)
    phone:      Mapped[str]      = mapped_column(String(32), unique=True, index=True)
    plan_type:  Mapped[str]      = mapped_column(String(16), default=PlanType.FREE.value)
    welcomed:   Mapped[bool]     = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        CheckConstraint("notify_at <= target_at", name="ck_reminders_notify_before_target"),
    )

    reminder_id:   Mapped[str]      = mapped_column(String(36), primary_key=True)
    user_id:       Mapped[str]      = mapped_column(ForeignKey("users.user_id"), index=True)
    reminder_text: Mapped[str]      = mapped_column(Text)
    target_at:     Mapped[datetime] = mapped_column(UTCDateTime)
    notify_at:     Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    lead_minutes:  Mapped[int]      = mapped_column(default=0)
    channel:       Mapped[str]      = mapped_column(String(16), default="sms")
    status:        Mapped[str]      = mapped_column(String(16), default=ReminderStatus.PENDING.value, index=True)
    created_at:    Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at:    Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class Notification(Base):
    __tablename__ = "notifications"

    notification_id: Mapped[str]             = mapped_column(String(36), primary_key=True)
    reminder_id:     Mapped[str]             = mapped_column(ForeignKey("reminders.reminder_id"), index=True)
    channel:         Mapped[str]             = mapped_column(String(16), default="sms")
    status:          Mapped[str]             = mapped_column(String(16), default=NotificationStatus.PENDING.value)
    delivery_id:     Mapped[str | None]      = mapped_column(String(128))
    error:           Mapped[str | None]      = mapped_column(Text)
    sent_at:         Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_at:      Mapped[datetime]        = mapped_column(UTCDateTime, default=utcnow)


# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (tests and local dev; production runs Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ──────────────────────────────────────────────────────────────────────
# 5. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

# 5.1 Users -----------------------------------------------------------
async def get_user(user_id: str) -> User | None:
    async for s in get_session():
        user = await s.get(User, user_id)
    return user


async def get_user_by_phone(phone: str) -> User | None:
    async for s in get_session():
        res = await s.execute(select(User).where(User.phone == phone))
        user = res.scalar_one_or_none()
    return user


async def get_or_create_user(phone: str, plan_type: PlanType = PlanType.FREE) -> User:
    user = await get_user_by_phone(phone)
    if user is not None:
        return user
    user = User(
        user_id=str(uuid4()),
        phone=phone,
        plan_type=plan_type.value,
        welcomed=False,
        created_at=utcnow(),
    )
    async for s in get_session():
        s.add(user)
        await s.commit()
    return user


async def set_plan(user_id: str, plan_type: PlanType) -> None:
    async for s in get_session():
        await s.execute(
            update(User).where(User.user_id == user_id).values(plan_type=plan_type.value)
        )
        await s.commit()


async def claim_welcome(user_id: str) -> bool:
    """Flip the first-contact flag; True only for the caller that flipped it."""
    async for s in get_session():
        res = await s.execute(
            update(User)
            .where(User.user_id == user_id, User.welcomed.is_(False))
            .values(welcomed=True)
        )
        await s.commit()
    return res.rowcount == 1


# 5.2 Insert reminder --------------------------------------------------
async def insert_reminder(draft: ReminderDraft) -> Reminder:
    now = utcnow()
    reminder = Reminder(
        reminder_id=str(uuid4()),
        user_id=draft.user_id,
        reminder_text=draft.reminder_text,
        target_at=draft.target_at,
        notify_at=draft.notify_at,
        lead_minutes=draft.lead_minutes,
        channel=draft.channel,
        status=ReminderStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    async for s in get_session():
        s.add(reminder)
        await s.commit()
    return reminder


async def get_reminder(reminder_id: str) -> Reminder | None:
    async for s in get_session():
        reminder = await s.get(Reminder, reminder_id)
    return reminder


# 5.3 Owner queries ----------------------------------------------------
async def list_pending_reminders(user_id: str, after: datetime | None = None, limit: int = 50) -> list[Reminder]:
    """Pending reminders of one owner, soonest notification first."""
    async for s in get_session():
        stmt = select(Reminder).where(
            Reminder.user_id == user_id,
            Reminder.status == ReminderStatus.PENDING.value,
        )
        if after is not None:
            stmt = stmt.where(Reminder.notify_at >= after)
        stmt = stmt.order_by(Reminder.notify_at).limit(limit)
        res = await s.execute(stmt)
        rows = list(res.scalars())
    return rows


async def list_reminders_between(
    user_id: str,
    start: datetime,
    end: datetime,
    statuses: Iterable[ReminderStatus] = (ReminderStatus.PENDING,),
    limit: int = 100,
) -> list[Reminder]:
    """Reminders whose event moment falls in ``[start, end]``."""
    async for s in get_session():
        stmt = (
            select(Reminder)
            .where(
                Reminder.user_id == user_id,
                Reminder.status.in_([st.value for st in statuses]),
                Reminder.target_at >= start,
                Reminder.target_at <= end,
            )
            .order_by(Reminder.target_at)
            .limit(limit)
        )
        res = await s.execute(stmt)
        rows = list(res.scalars())
    return rows


def _contains(term: str) -> str:
    """LIKE pattern matching ``term`` literally anywhere in the column."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


async def search_reminders(
    user_id: str,
    keyword: str,
    status: ReminderStatus | None = ReminderStatus.PENDING,
    limit: int = 10,
) -> list[Reminder]:
    """Case-insensitive keyword search over the reminder text.

    The whole phrase is tried first; when it matches nothing, any of its
    words (three letters or more) may match.
    """
    phrase = " ".join(keyword.split())
    words = [w for w in phrase.split() if len(w) >= 3]
    base = select(Reminder).where(Reminder.user_id == user_id)
    if status is not None:
        base = base.where(Reminder.status == status.value)

    async for s in get_session():
        res = await s.execute(
            base.where(Reminder.reminder_text.ilike(_contains(phrase), escape="\\"))
            .order_by(Reminder.target_at)
            .limit(limit)
        )
        found = list(res.scalars())
        if not found and len(words) >= 2:
            res = await s.execute(
                base.where(or_(*[Reminder.reminder_text.ilike(_contains(w), escape="\\") for w in words]))
                .order_by(Reminder.target_at)
                .limit(limit)
            )
            found = list(res.scalars())
    return found


async def count_reminders(
    user_id: str,
    status: ReminderStatus | None = None,
    created_since: datetime | None = None,
) -> int:
    async for s in get_session():
        stmt = select(func.count()).select_from(Reminder).where(Reminder.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Reminder.status == status.value)
        if created_since is not None:
            stmt = stmt.where(Reminder.created_at >= created_since)
        res = await s.execute(stmt)
        count = int(res.scalar_one())
    return count


# 5.4 Due scan and status transitions ----------------------------------
async def fetch_due_reminders(
    now: datetime,
    back_window: timedelta = timedelta(minutes=5),
    limit: int = 100,
) -> list[Reminder]:
    """Pending reminders with ``notify_at`` in ``(now - back_window, now]``."""
    async for s in get_session():
        stmt = (
            select(Reminder)
            .where(
                Reminder.status == ReminderStatus.PENDING.value,
                Reminder.notify_at > now - back_window,
                Reminder.notify_at <= now,
            )
            .order_by(Reminder.notify_at)
            .limit(limit)
        )
        res = await s.execute(stmt)
        rows = list(res.scalars())
    return rows


async def _transition_pending(reminder_id: str, new_status: ReminderStatus, *conditions: Any) -> bool:
    async for s in get_session():
        res = await s.execute(
            update(Reminder)
            .where(
                Reminder.reminder_id == reminder_id,
                Reminder.status == ReminderStatus.PENDING.value,
                *conditions,
            )
            .values(status=new_status.value, updated_at=utcnow())
        )
        await s.commit()
    return res.rowcount == 1


async def claim_reminder(reminder_id: str) -> bool:
    """Atomically move a pending reminder to ``sent``; False if someone else did."""
    return await _transition_pending(reminder_id, ReminderStatus.SENT)


async def mark_reminder_failed(reminder_id: str) -> bool:
    return await _transition_pending(reminder_id, ReminderStatus.FAILED)


async def cancel_reminder(reminder_id: str, user_id: str | None = None) -> bool:
    """Cancel a pending reminder, optionally only if ``user_id`` owns it."""
    conditions = [Reminder.user_id == user_id] if user_id is not None else []
    return await _transition_pending(reminder_id, ReminderStatus.CANCELLED, *conditions)


# 5.5 Notifications ----------------------------------------------------
async def create_notification(reminder_id: str, channel: str = "sms") -> Notification:
    notification = Notification(
        notification_id=str(uuid4()),
        reminder_id=reminder_id,
        channel=channel,
        status=NotificationStatus.PENDING.value,
        created_at=utcnow(),
    )
    async for s in get_session():
        s.add(notification)
        await s.commit()
    return notification


async def mark_notification_sent(notification_id: str, delivery_id: str | None = None) -> None:
    async for s in get_session():
        await s.execute(
            update(Notification)
            .where(Notification.notification_id == notification_id)
            .values(
                status=NotificationStatus.SENT.value,
                delivery_id=delivery_id,
                sent_at=utcnow(),
            )
        )
        await s.commit()


async def mark_notification_failed(notification_id: str, err: str) -> None:
    async for s in get_session():
        await s.execute(
            update(Notification)
            .where(Notification.notification_id == notification_id)
            .values(status=NotificationStatus.FAILED.value, error=err[:2000])
        )
        await s.commit()


async def list_notifications(reminder_id: str) -> Sequence[Notification]:
    async for s in get_session():
        res = await s.execute(
            select(Notification)
            .where(Notification.reminder_id == reminder_id)
            .order_by(Notification.created_at)
        )
        rows = list(res.scalars())
    return rows


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None

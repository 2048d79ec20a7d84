from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

import db
from config import settings
from app.types.parser_contract import NoneReply
from app.utils import sms as sms_util
from app.utils.sms import MessagingError

TZ = ZoneInfo("America/Los_Angeles")
# Sunday 18 Oct 2026, 09:00 in Los Angeles
NOW = datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _offline_collaborators(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    monkeypatch.setattr(settings, "DEFAULT_TIMEZONE", "America/Los_Angeles")
    monkeypatch.setattr(sms_util, "TELNYX_API_KEY", None)


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.dispose_engine()
    await db.create_all()
    yield
    await db.dispose_engine()


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


class FakeMessenger:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent = []
        self.notices = []
        self.welcomes = []

    async def send_text(self, to, body):
        if self.fail:
            raise MessagingError("channel down")
        self.sent.append((to, body))
        return f"fake-{len(self.sent)}"

    async def send_reminder_notice(self, to, reminder_text, target_at, lead_minutes=0, tz_name=None):
        if self.fail:
            raise MessagingError("channel down")
        self.notices.append((to, reminder_text, target_at, lead_minutes))
        return f"fake-notice-{len(self.notices)}"

    async def send_welcome(self, to):
        if self.fail:
            raise MessagingError("channel down")
        self.welcomes.append(to)
        return f"fake-welcome-{len(self.welcomes)}"

    def last(self):
        return self.sent[-1][1] if self.sent else None


@pytest.fixture
def messenger():
    return FakeMessenger()


class FakeExtractor:
    """Scripted extractor: exact-text replies, else an empty reply."""

    def __init__(self, replies=None):
        self.replies = dict(replies or {})
        self.calls = []

    async def extract(self, text, context=None, scope=None, now=None, tz=None):
        self.calls.append((text, scope))
        reply = self.replies.get(text)
        if isinstance(reply, Exception):
            raise reply
        return reply or NoneReply(method="llm")

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from app.types.parser_contract import (
    CreateReply,
    DeleteReply,
    NoneReply,
    QueryReply,
    extractor_reply_adapter,
)
from app.types.reminder_contract import ReminderDraft


def test_union_dispatches_on_intent():
    reply = extractor_reply_adapter.validate_python(
        {
            "intent": "create",
            "text": "  call   mom ",
            "moment": "2030-01-01T09:00:00Z",
            "confidence": "high",
            "method": "llm",
        }
    )
    assert isinstance(reply, CreateReply)
    assert reply.text == "call mom"
    assert reply.moment == datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)

    assert isinstance(extractor_reply_adapter.validate_python({"intent": "query"}), QueryReply)
    assert isinstance(
        extractor_reply_adapter.validate_python({"intent": "delete", "keyword": "dentist"}), DeleteReply
    )
    assert isinstance(extractor_reply_adapter.validate_python({"intent": "none"}), NoneReply)


def test_defaults_are_low_confidence_offline():
    reply = NoneReply()
    assert reply.confidence == "low"
    assert reply.method == "offline"
    assert QueryReply().period == "next 7 days"


@pytest.mark.parametrize(
    "data",
    [
        {"intent": "create", "moment": "2030-01-01T09:00:00"},
        {"intent": "create", "lead_minutes": -5},
        {"intent": "delete", "keyword": "   "},
        {"intent": "create", "confidence": "certain"},
        {"intent": "reschedule"},
    ],
)
def test_invalid_replies_rejected(data):
    with pytest.raises(ValidationError):
        extractor_reply_adapter.validate_python(data)


def test_blank_text_becomes_none():
    assert CreateReply(text="   ").text is None


def test_draft_notify_at_is_target_minus_lead():
    target = datetime(2030, 1, 1, 15, 0, tzinfo=timezone.utc)
    draft = ReminderDraft(user_id="u1", reminder_text="call mom", target_at=target, lead_minutes=30)
    assert draft.notify_at == target - timedelta(minutes=30)
    assert draft.notify_at <= draft.target_at


def test_draft_validation():
    target = datetime(2030, 1, 1, 15, 0, tzinfo=timezone.utc)
    with pytest.raises(ValidationError):
        ReminderDraft(user_id="u1", reminder_text=" ", target_at=target)
    with pytest.raises(ValidationError):
        ReminderDraft(user_id="u1", reminder_text="x", target_at=target.replace(tzinfo=None))
    with pytest.raises(ValidationError):
        ReminderDraft(user_id="u1", reminder_text="x", target_at=target, lead_minutes=-1)
    with pytest.raises(ValidationError):
        ReminderDraft(user_id="u1", reminder_text="x", target_at=target, channel="email")

"""Pydantic models that define the contract between the slot extractor
(LLM or offline parser) and the dialog state machine.

The extractor is a fallible oracle: every reply is validated here before the
chatbot reads it, and the chatbot still applies its own checks (future-dated,
within horizon, plan limits) before acting on a value.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from typing_extensions import Annotated

Confidence = Literal["high", "medium", "low"]
Method = Literal["llm", "offline"]


class ExtractionScope(str, Enum):
    """How much the extractor should look for."""

    FULL = "full"
    MOMENT = "moment"


class _BaseReply(BaseModel):
    confidence: Confidence = "low"
    method: Method = "offline"


class CreateReply(_BaseReply):
    """The user is describing (part of) a new reminder."""

    intent: Literal["create"] = "create"
    text: Optional[str] = None
    moment: Optional[datetime] = None
    lead_minutes: Optional[int] = None

    @field_validator("text")
    def _strip_text(cls, v):  # noqa: N805
        if v is None:
            return None
        v = " ".join(v.split())
        return v or None

    @field_validator("moment")
    def _require_aware(cls, v):  # noqa: N805
        if v is not None and v.tzinfo is None:
            raise ValueError("moment must be timezone-aware")
        return v

    @field_validator("lead_minutes")
    def _non_negative(cls, v):  # noqa: N805
        if v is not None and v < 0:
            raise ValueError("lead_minutes must be >= 0")
        return v


class QueryReply(_BaseReply):
    """The user asks which reminders exist for a period."""

    intent: Literal["query"] = "query"
    period: str = "next 7 days"


class DeleteReply(_BaseReply):
    """The user wants to cancel an existing reminder matching ``keyword``."""

    intent: Literal["delete"] = "delete"
    keyword: str

    @field_validator("keyword")
    def _non_empty(cls, v):  # noqa: N805
        v = " ".join(v.split())
        if not v:
            raise ValueError("keyword must be a non-empty string")
        return v


class NoneReply(_BaseReply):
    """Nothing actionable was recognised."""

    intent: Literal["none"] = "none"


ExtractorReply = Annotated[
    Union[CreateReply, QueryReply, DeleteReply, NoneReply],
    Field(discriminator="intent"),
]

extractor_reply_adapter: TypeAdapter[ExtractorReply] = TypeAdapter(ExtractorReply)

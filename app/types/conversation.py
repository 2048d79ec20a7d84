"""Dialog states and the per-identity conversation context."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class DialogState(str, Enum):
    INITIAL = "initial"
    AWAITING_MOMENT = "awaiting_moment"
    AWAITING_LEAD_TIME = "awaiting_lead_time"
    CONFIRMING = "confirming"
    CONFIRMING_DELETE = "confirming_delete"
    SELECTING_DELETE_TARGET = "selecting_delete_target"


# Every state may re-prompt itself and may always abort back to INITIAL.
VALID_TRANSITIONS = {
    DialogState.INITIAL: [
        DialogState.INITIAL,
        DialogState.AWAITING_MOMENT,
        DialogState.AWAITING_LEAD_TIME,
        DialogState.CONFIRMING,
        DialogState.CONFIRMING_DELETE,
        DialogState.SELECTING_DELETE_TARGET,
    ],
    DialogState.AWAITING_MOMENT: [
        DialogState.AWAITING_MOMENT,
        DialogState.AWAITING_LEAD_TIME,
        DialogState.INITIAL,
    ],
    DialogState.AWAITING_LEAD_TIME: [
        DialogState.AWAITING_LEAD_TIME,
        DialogState.CONFIRMING,
        DialogState.INITIAL,
    ],
    DialogState.CONFIRMING: [DialogState.INITIAL],
    DialogState.CONFIRMING_DELETE: [
        DialogState.CONFIRMING_DELETE,
        DialogState.INITIAL,
    ],
    DialogState.SELECTING_DELETE_TARGET: [
        DialogState.SELECTING_DELETE_TARGET,
        DialogState.CONFIRMING_DELETE,
        DialogState.INITIAL,
    ],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: DialogState, to_state: DialogState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: DialogState, to_state: DialogState) -> bool:
    """Check if transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def transition(from_state: DialogState, to_state: DialogState) -> DialogState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str


class DeleteCandidate(BaseModel):
    reminder_id: str
    text: str
    moment: datetime


class ConversationContext(BaseModel):
    identity: str
    user_id: Optional[str] = None
    state: DialogState = DialogState.INITIAL
    draft_message: Optional[str] = None
    draft_moment: Optional[datetime] = None
    draft_lead_minutes: Optional[int] = None
    pending_delete_target_id: Optional[str] = None
    delete_candidates: List[DeleteCandidate] = Field(default_factory=list)
    history: List[HistoryTurn] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

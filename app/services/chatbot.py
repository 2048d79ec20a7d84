"""
Dialog state machine for the SMS reminder assistant.

One call to ``Chatbot.process_message`` is one turn: the identity's lock is
held for the whole turn, the handler for the current ``DialogState``
computes a reply plus the next state, the transition is applied to the
conversation store and only then is the reply sent. Any exception inside a
turn leaves the stored context untouched and answers with an apology.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from zoneinfo import ZoneInfo

import db
from app.services import offline_parser, plan_limits
from app.services.conversation_store import ConversationStore, InMemoryConversationStore
from app.services.parser_agent import ParserAgent
from app.services.reminder_query import format_reminders_list, parse_period
from app.types.conversation import (
    ConversationContext,
    DeleteCandidate,
    DialogState,
    transition,
)
from app.types.parser_contract import CreateReply, ExtractionScope
from app.types.reminder_contract import ReminderDraft, compute_notify_at
from app.utils.dates import (
    describe_lead,
    format_moment,
    get_timezone,
    normalize,
    parse_lead_minutes,
    validate_moment,
)
from app.utils.sms import WELCOME_TEXT, MessagingError, SmsMessenger

_LOGGER = logging.getLogger(__name__)

AFFIRMATIVE = {"yes", "y", "confirm", "ok", "okay", "sure", "sim", "s", "confirmar"}
NEGATIVE = {"no", "n", "nope", "keep", "nao", "não"}
ACCEPTED_CONFIDENCE = {"high", "medium"}

APOLOGY = "Sorry, something went wrong on my side. Please send that again in a moment."

USAGE_HINT = (
    "I can set reminders for you. Try:\n"
    "- remind me to call mom tomorrow at 3pm\n"
    "- what do I have this week?\n"
    "- delete dentist\n"
    "Send /help for all commands."
)

COMMANDS_TEXT = (
    "Commands:\n"
    "/help - how to use me\n"
    "/cancel - drop the current conversation\n"
    "/list - your upcoming reminders\n"
    "/plan - your plan and usage"
)

MOMENT_EXAMPLES = "Examples: tomorrow at 3pm, friday 9:30, in 2 hours, 25/12 18:00"
LEAD_EXAMPLES = "Examples: 15 minutes, 1 hour, 1h30, or \"at the exact time\""

_INDEX_RE = re.compile(r"^\s*#?\s*(\d+)\s*[.)]?\s*$")


@dataclass
class TurnResult:
    """What a turn answered and where the dialog ended up."""

    reply: str
    state: DialogState
    delivered: bool = False
    error: bool = False


@dataclass
class _Step:
    reply: str
    next_state: DialogState
    fields: Dict[str, Any] = field(default_factory=dict)


def _word(text: str) -> str:
    return normalize(text).strip(" .!?")


class Chatbot:
    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        extractor: Optional[ParserAgent] = None,
        messenger: Optional[SmsMessenger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tz: Optional[ZoneInfo] = None,
    ):
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.store = store if store is not None else InMemoryConversationStore(clock=self.clock)
        self.extractor = extractor if extractor is not None else ParserAgent()
        self.messenger = messenger if messenger is not None else SmsMessenger()
        self.tz = tz or get_timezone()

    # ──────────────────────────────────────────────────────────────────
    # Turn entry-point
    # ──────────────────────────────────────────────────────────────────

    async def process_message(self, identity: str, text: str, is_voice_origin: bool = False) -> TurnResult:
        text = (text or "").strip()
        async with self.store.lock(identity):
            state = DialogState.INITIAL
            try:
                user = await db.get_or_create_user(identity)
                if await db.claim_welcome(user.user_id):
                    await self._send_welcome(identity)

                ctx = await self.store.get_or_create(identity)
                state = ctx.state
                if ctx.user_id != user.user_id:
                    ctx = await self.store.update(identity, user_id=user.user_id)

                if text.startswith("/"):
                    reply = await self._handle_command(ctx, text)
                    current = await self.store.get_or_create(identity)
                    state = current.state
                else:
                    step = await self._dispatch(ctx, text)
                    state = await self._apply(ctx, text, step)
                    reply = step.reply
                error = False
            except Exception:
                _LOGGER.exception("Turn failed for %s in state %s", identity, state.value)
                reply, error = APOLOGY, True

            if is_voice_origin and text:
                reply = f"I heard: \"{text}\"\n\n{reply}"
            delivered = await self._send(identity, reply)
        return TurnResult(reply=reply, state=state, delivered=delivered, error=error)

    async def _apply(self, ctx: ConversationContext, text: str, step: _Step) -> DialogState:
        """Validate and store the transition; Initial drops the context."""
        new_state = transition(ctx.state, step.next_state)
        if new_state == DialogState.INITIAL:
            await self.store.clear(ctx.identity)
            return new_state
        await self.store.update(ctx.identity, state=new_state, **step.fields)
        await self.store.append_history(ctx.identity, "user", text)
        await self.store.append_history(ctx.identity, "assistant", step.reply)
        return new_state

    async def _dispatch(self, ctx: ConversationContext, text: str) -> _Step:
        handlers = {
            DialogState.INITIAL: self._on_initial,
            DialogState.AWAITING_MOMENT: self._on_awaiting_moment,
            DialogState.AWAITING_LEAD_TIME: self._on_awaiting_lead_time,
            DialogState.CONFIRMING: self._on_confirming,
            DialogState.CONFIRMING_DELETE: self._on_confirming_delete,
            DialogState.SELECTING_DELETE_TARGET: self._on_selecting_delete_target,
        }
        return await handlers[ctx.state](ctx, text)

    # ──────────────────────────────────────────────────────────────────
    # State handlers
    # ──────────────────────────────────────────────────────────────────

    async def _on_initial(self, ctx: ConversationContext, text: str) -> _Step:
        now = self.clock()
        reply = await self.extractor.extract(text, ctx, ExtractionScope.FULL, now=now, tz=self.tz)
        _LOGGER.info("Extractor %s/%s -> %s", reply.method, reply.confidence, reply.intent)

        if reply.intent == "query":
            period = parse_period(reply.period, now, self.tz)
            rows = await db.list_reminders_between(ctx.user_id, period.start, period.end)
            return _Step(format_reminders_list(rows, period.label, now, self.tz), DialogState.INITIAL)

        if reply.intent == "delete":
            return await self._start_delete(ctx, reply.keyword)

        if reply.intent == "create":
            return await self._start_create(ctx, text, reply, now)

        return _Step(USAGE_HINT, DialogState.INITIAL)

    async def _start_create(self, ctx: ConversationContext, text: str, reply: CreateReply, now: datetime) -> _Step:
        check = await plan_limits.can_create(ctx.user_id, now)
        if not check.allowed:
            return _Step(f"{check.reason}\n\nSend /plan to see your usage.", DialogState.INITIAL)

        message = reply.text or offline_parser.clean_text(text)
        if not message:
            return _Step(
                "What should I remind you about? For example: remind me to call mom tomorrow at 3pm",
                DialogState.INITIAL,
            )
        moment = reply.moment
        problem = None
        if moment is not None:
            problem = validate_moment(moment, now)
            if reply.confidence not in ACCEPTED_CONFIDENCE:
                problem = problem or "unsure"

        if moment is None or problem is not None:
            prompt = f"Got it, I'll remind you about:\n\"{message}\"\n\n"
            if problem in ("past", "too_far"):
                prompt += "That time needs to be in the future and within a year.\n"
            prompt += f"When should I remind you?\n{MOMENT_EXAMPLES}"
            return _Step(prompt, DialogState.AWAITING_MOMENT, {"draft_message": message})

        fields = {"draft_message": message, "draft_moment": moment}
        if reply.lead_minutes is not None:
            lead = await plan_limits.validate_lead_time(ctx.user_id, reply.lead_minutes)
            if lead.valid and compute_notify_at(moment, reply.lead_minutes) > now:
                fields["draft_lead_minutes"] = reply.lead_minutes
                return _Step(
                    self._summary(message, moment, reply.lead_minutes), DialogState.CONFIRMING, fields
                )

        return _Step(
            f"Got it, I'll remind you about:\n\"{message}\"\n"
            f"When: {format_moment(moment, self.tz)}\n\n"
            f"How long BEFORE should I notify you?\n{LEAD_EXAMPLES}",
            DialogState.AWAITING_LEAD_TIME,
            fields,
        )

    async def _on_awaiting_moment(self, ctx: ConversationContext, text: str) -> _Step:
        now = self.clock()
        reply = await self.extractor.extract(text, ctx, ExtractionScope.MOMENT, now=now, tz=self.tz)
        moment = reply.moment if isinstance(reply, CreateReply) else None

        if moment is None or reply.confidence not in ACCEPTED_CONFIDENCE:
            return _Step(
                f"I couldn't understand that date/time. Please try again.\n{MOMENT_EXAMPLES}",
                DialogState.AWAITING_MOMENT,
            )
        if validate_moment(moment, now) is not None:
            return _Step(
                "The date must be in the future and within a year. Please send another one.",
                DialogState.AWAITING_MOMENT,
            )

        return _Step(
            f"Date set: {format_moment(moment, self.tz)}\n\n"
            f"How long BEFORE should I notify you?\n{LEAD_EXAMPLES}",
            DialogState.AWAITING_LEAD_TIME,
            {"draft_moment": moment},
        )

    async def _on_awaiting_lead_time(self, ctx: ConversationContext, text: str) -> _Step:
        minutes = parse_lead_minutes(text)
        if minutes is None:
            return _Step(
                f"I couldn't understand how long before.\n{LEAD_EXAMPLES}",
                DialogState.AWAITING_LEAD_TIME,
            )

        check = await plan_limits.validate_lead_time(ctx.user_id, minutes)
        if not check.valid:
            return _Step(
                f"{check.reason}\n\nSend /plan to see your plan limits.",
                DialogState.AWAITING_LEAD_TIME,
            )

        if compute_notify_at(ctx.draft_moment, minutes) <= self.clock():
            return _Step(
                "That would put the notice in the past. Please choose a shorter lead time.",
                DialogState.AWAITING_LEAD_TIME,
            )

        return _Step(
            self._summary(ctx.draft_message, ctx.draft_moment, minutes),
            DialogState.CONFIRMING,
            {"draft_lead_minutes": minutes},
        )

    async def _on_confirming(self, ctx: ConversationContext, text: str) -> _Step:
        if _word(text) not in AFFIRMATIVE:
            return _Step(
                "Reminder discarded. Send a new message to create another one.",
                DialogState.INITIAL,
            )

        now = self.clock()
        check = await plan_limits.can_create(ctx.user_id, now)
        if not check.allowed:
            return _Step(f"{check.reason}\n\nSend /plan to see your usage.", DialogState.INITIAL)

        draft = ReminderDraft(
            user_id=ctx.user_id,
            reminder_text=ctx.draft_message,
            target_at=ctx.draft_moment,
            lead_minutes=ctx.draft_lead_minutes or 0,
        )
        if draft.notify_at <= now:
            return _Step(
                "That time has already passed, so I didn't save the reminder. Please start again.",
                DialogState.INITIAL,
            )

        reminder = await db.insert_reminder(draft)
        _LOGGER.info("Reminder %s created for %s", reminder.reminder_id, ctx.identity)
        return _Step(
            f"Reminder saved! I'll notify you on {format_moment(reminder.notify_at, self.tz)}.",
            DialogState.INITIAL,
        )

    async def _start_delete(self, ctx: ConversationContext, keyword: str) -> _Step:
        matches = await db.search_reminders(ctx.user_id, keyword)
        if not matches:
            return _Step(f"I couldn't find a pending reminder about \"{keyword}\".", DialogState.INITIAL)

        if len(matches) == 1:
            target = matches[0]
            return _Step(
                self._delete_prompt(target.reminder_text, target.target_at),
                DialogState.CONFIRMING_DELETE,
                {"pending_delete_target_id": target.reminder_id},
            )

        candidates = [
            DeleteCandidate(reminder_id=r.reminder_id, text=r.reminder_text, moment=r.target_at)
            for r in matches
        ]
        lines = [f"I found {len(candidates)} reminders matching \"{keyword}\":"]
        for number, candidate in enumerate(candidates, start=1):
            lines.append(f"{number}. {candidate.text} ({format_moment(candidate.moment, self.tz)})")
        lines.append("")
        lines.append("Reply with the number of the one to delete.")
        return _Step("\n".join(lines), DialogState.SELECTING_DELETE_TARGET, {"delete_candidates": candidates})

    async def _on_selecting_delete_target(self, ctx: ConversationContext, text: str) -> _Step:
        candidates = ctx.delete_candidates
        match = _INDEX_RE.match(text)
        index = int(match.group(1)) if match else 0
        if not 1 <= index <= len(candidates):
            return _Step(
                f"Please reply with a number from 1 to {len(candidates)}, or /cancel.",
                DialogState.SELECTING_DELETE_TARGET,
            )

        chosen = candidates[index - 1]
        return _Step(
            self._delete_prompt(chosen.text, chosen.moment),
            DialogState.CONFIRMING_DELETE,
            {"pending_delete_target_id": chosen.reminder_id, "delete_candidates": []},
        )

    async def _on_confirming_delete(self, ctx: ConversationContext, text: str) -> _Step:
        answer = _word(text)
        if answer in AFFIRMATIVE:
            cancelled = await db.cancel_reminder(ctx.pending_delete_target_id, user_id=ctx.user_id)
            if cancelled:
                _LOGGER.info("Reminder %s cancelled by %s", ctx.pending_delete_target_id, ctx.identity)
                return _Step("Done, the reminder was cancelled.", DialogState.INITIAL)
            return _Step(
                "That reminder is no longer pending (it was already sent or cancelled).",
                DialogState.INITIAL,
            )
        if answer in NEGATIVE:
            return _Step("Okay, I kept the reminder.", DialogState.INITIAL)
        return _Step("Please answer yes to delete it or no to keep it.", DialogState.CONFIRMING_DELETE)

    # ──────────────────────────────────────────────────────────────────
    # Commands
    # ──────────────────────────────────────────────────────────────────

    async def _handle_command(self, ctx: ConversationContext, text: str) -> str:
        command = text.split()[0].lower()

        if command in ("/cancel", "/cancelar"):
            await self.store.clear(ctx.identity)
            return "Conversation cancelled. Send a message whenever you want a new reminder."

        if command in ("/help", "/ajuda"):
            return f"{WELCOME_TEXT}\n\n{COMMANDS_TEXT}"

        if command in ("/list", "/lembretes", "/reminders"):
            rows = await db.list_pending_reminders(ctx.user_id)
            if not rows:
                return "You have no active reminders."
            lines = [f"Your reminders ({len(rows)}):"]
            for number, reminder in enumerate(rows, start=1):
                lines.append(
                    f"{number}. {reminder.reminder_text} - {format_moment(reminder.target_at, self.tz)}"
                )
            return "\n".join(lines)

        if command in ("/plan", "/plano", "/usage", "/uso"):
            return await plan_limits.format_usage_message(ctx.user_id, self.clock())

        return f"Unknown command.\n\n{COMMANDS_TEXT}"

    # ──────────────────────────────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────────────────────────────

    def _summary(self, message: str, moment: datetime, lead_minutes: int) -> str:
        notify_at = compute_notify_at(moment, lead_minutes)
        return (
            "Please confirm your reminder:\n"
            f"Message: \"{message}\"\n"
            f"Event: {format_moment(moment, self.tz)}\n"
            f"Notice: {describe_lead(lead_minutes)} ({format_moment(notify_at, self.tz)})\n\n"
            "Confirm? (yes/no)"
        )

    def _delete_prompt(self, text: str, moment: datetime) -> str:
        return (
            f"Delete this reminder?\n\"{text}\" ({format_moment(moment, self.tz)})\n\n"
            "Answer yes or no."
        )

    async def _send(self, identity: str, body: str) -> bool:
        try:
            await self.messenger.send_text(identity, body)
            return True
        except MessagingError as exc:
            _LOGGER.error("Reply to %s not delivered: %s", identity, exc)
            return False

    async def _send_welcome(self, identity: str) -> None:
        try:
            await self.messenger.send_welcome(identity)
        except MessagingError as exc:
            _LOGGER.error("Welcome to %s not delivered: %s", identity, exc)


_chatbot: Optional[Chatbot] = None


def get_chatbot() -> Chatbot:
    """Process-wide chatbot; conversation state lives in its store."""
    global _chatbot
    if _chatbot is None:
        _chatbot = Chatbot()
    return _chatbot

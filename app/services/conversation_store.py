"""Per-identity dialog contexts.

Contexts live in process memory and expire after a period of inactivity.
``ConversationStore`` is the seam for swapping in a shared cache; callers
only ever receive copies, so the only way to change stored state is
``update``/``append_history``/``clear``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from config import settings
from app.types.conversation import ConversationContext, DialogState, HistoryTurn

_LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStore(ABC):
    @abstractmethod
    async def get_or_create(self, identity: str) -> ConversationContext: ...

    @abstractmethod
    async def update(self, identity: str, **fields) -> ConversationContext: ...

    @abstractmethod
    async def append_history(self, identity: str, role: str, text: str) -> None: ...

    @abstractmethod
    async def clear(self, identity: str) -> None: ...

    @abstractmethod
    async def sweep_expired(self) -> int: ...

    @abstractmethod
    def lock(self, identity: str) -> asyncio.Lock: ...


class InMemoryConversationStore(ConversationStore):
    def __init__(
        self,
        timeout: Optional[timedelta] = None,
        history_limit: Optional[int] = None,
        clock: Clock = _utcnow,
    ):
        self.timeout = (
            timeout if timeout is not None else timedelta(minutes=settings.CONVERSATION_TIMEOUT_MINUTES)
        )
        self.history_limit = history_limit if history_limit is not None else settings.CONVERSATION_HISTORY_LIMIT
        self._clock = clock
        self._contexts: Dict[str, ConversationContext] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _expired(self, ctx: ConversationContext, now: datetime) -> bool:
        return now - ctx.updated_at > self.timeout

    def _live(self, identity: str) -> Optional[ConversationContext]:
        ctx = self._contexts.get(identity)
        if ctx is not None and self._expired(ctx, self._clock()):
            _LOGGER.info("Conversation for %s expired in state %s", identity, ctx.state.value)
            del self._contexts[identity]
            return None
        return ctx

    async def get_or_create(self, identity: str) -> ConversationContext:
        ctx = self._live(identity)
        if ctx is None:
            now = self._clock()
            ctx = ConversationContext(identity=identity, created_at=now, updated_at=now)
            self._contexts[identity] = ctx
        return ctx.model_copy(deep=True)

    async def update(self, identity: str, **fields) -> ConversationContext:
        """Merge ``fields`` into the stored context and bump ``updated_at``."""
        current = self._live(identity)
        if current is None:
            await self.get_or_create(identity)
            current = self._contexts[identity]
        if "state" in fields and not isinstance(fields["state"], DialogState):
            fields["state"] = DialogState(fields["state"])
        fields["updated_at"] = self._clock()
        merged = current.model_copy(update=fields, deep=True)
        self._contexts[identity] = ConversationContext.model_validate(merged.model_dump())
        return self._contexts[identity].model_copy(deep=True)

    async def append_history(self, identity: str, role: str, text: str) -> None:
        ctx = self._live(identity)
        if ctx is None:
            await self.get_or_create(identity)
            ctx = self._contexts[identity]
        history = list(ctx.history) + [HistoryTurn(role=role, text=text)]
        await self.update(identity, history=history[-self.history_limit:])

    async def clear(self, identity: str) -> None:
        self._contexts.pop(identity, None)

    async def sweep_expired(self) -> int:
        now = self._clock()
        stale = [k for k, ctx in self._contexts.items() if self._expired(ctx, now)]
        for identity in stale:
            del self._contexts[identity]
        # Cleared conversations leave their lock behind; drop the idle ones
        idle = [
            k for k, lock in self._locks.items()
            if k not in self._contexts and not lock.locked()
        ]
        for identity in idle:
            del self._locks[identity]
        if stale:
            _LOGGER.info("Swept %d expired conversation(s)", len(stale))
        return len(stale)

    def lock(self, identity: str) -> asyncio.Lock:
        """Per-identity lock; hold it for the whole turn."""
        if identity not in self._locks:
            self._locks[identity] = asyncio.Lock()
        return self._locks[identity]

    def __len__(self) -> int:
        return len(self._contexts)

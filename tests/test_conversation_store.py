from datetime import timedelta

import pytest

from app.services.conversation_store import InMemoryConversationStore
from app.types.conversation import (
    DialogState,
    InvalidTransitionError,
    can_transition,
    transition,
)
from conftest import NOW, FakeClock


@pytest.fixture
def store(clock):
    return InMemoryConversationStore(timeout=timedelta(minutes=10), history_limit=10, clock=clock)


@pytest.mark.asyncio
async def test_get_or_create_returns_copies(store):
    ctx = await store.get_or_create("+1555")
    assert ctx.state == DialogState.INITIAL
    assert ctx.created_at == NOW

    ctx.draft_message = "mutated locally"
    again = await store.get_or_create("+1555")
    assert again.draft_message is None
    assert len(store) == 1


@pytest.mark.asyncio
async def test_update_merges_and_bumps_updated_at(store, clock):
    await store.get_or_create("+1555")
    clock.advance(minutes=3)
    ctx = await store.update("+1555", state=DialogState.AWAITING_MOMENT, draft_message="call mom")

    assert ctx.state == DialogState.AWAITING_MOMENT
    assert ctx.draft_message == "call mom"
    assert ctx.updated_at == NOW + timedelta(minutes=3)
    assert ctx.created_at == NOW


@pytest.mark.asyncio
async def test_history_is_bounded(store):
    for i in range(13):
        await store.append_history("+1555", "user", f"msg {i}")
    ctx = await store.get_or_create("+1555")
    assert len(ctx.history) == 10
    assert ctx.history[0].text == "msg 3"
    assert ctx.history[-1].text == "msg 12"


@pytest.mark.asyncio
async def test_expired_context_is_recreated_not_resurrected(store, clock):
    await store.update("+1555", state=DialogState.CONFIRMING, draft_message="call mom")
    clock.advance(minutes=10, seconds=1)

    ctx = await store.get_or_create("+1555")
    assert ctx.state == DialogState.INITIAL
    assert ctx.draft_message is None
    assert ctx.created_at == clock()


@pytest.mark.asyncio
async def test_activity_keeps_context_alive(store, clock):
    await store.update("+1555", state=DialogState.AWAITING_LEAD_TIME)
    clock.advance(minutes=9)
    await store.update("+1555", draft_lead_minutes=5)
    clock.advance(minutes=9)

    ctx = await store.get_or_create("+1555")
    assert ctx.state == DialogState.AWAITING_LEAD_TIME


@pytest.mark.asyncio
async def test_sweep_removes_only_idle_contexts(store, clock):
    await store.get_or_create("+1000")
    clock.advance(minutes=8)
    await store.get_or_create("+2000")
    clock.advance(minutes=3)

    assert await store.sweep_expired() == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_clear(store):
    await store.update("+1555", state=DialogState.AWAITING_MOMENT)
    await store.clear("+1555")
    await store.clear("+1555")
    assert len(store) == 0


@pytest.mark.asyncio
async def test_sweep_drops_locks_of_finished_conversations(store, clock):
    for n in range(20):
        identity = f"+1555{n:04d}"
        async with store.lock(identity):
            await store.update(identity, state=DialogState.AWAITING_MOMENT)
            await store.clear(identity)
    async with store.lock("+19990000"):
        await store.get_or_create("+19990000")

    held = store.lock("+18880000")
    await held.acquire()
    clock.advance(minutes=1)
    await store.sweep_expired()

    assert set(store._locks) == {"+19990000", "+18880000"}
    held.release()

    clock.advance(minutes=30)
    await store.sweep_expired()
    assert store._locks == {}
    assert len(store) == 0


def test_lock_is_per_identity():
    store = InMemoryConversationStore(clock=FakeClock())
    assert store.lock("+1") is store.lock("+1")
    assert store.lock("+1") is not store.lock("+2")


def test_transition_table():
    assert can_transition(DialogState.INITIAL, DialogState.AWAITING_LEAD_TIME)
    assert can_transition(DialogState.SELECTING_DELETE_TARGET, DialogState.CONFIRMING_DELETE)
    assert transition(DialogState.CONFIRMING, DialogState.INITIAL) == DialogState.INITIAL
    with pytest.raises(InvalidTransitionError):
        transition(DialogState.CONFIRMING, DialogState.AWAITING_MOMENT)
    with pytest.raises(InvalidTransitionError):
        transition(DialogState.AWAITING_MOMENT, DialogState.CONFIRMING_DELETE)
    for state in DialogState:
        assert can_transition(state, DialogState.INITIAL)

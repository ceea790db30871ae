"""
Tests for EventRelay: history replay, live tail, overflow and cleanup.
"""

import asyncio

import pytest

from chatwire.broadcaster import Broadcaster
from chatwire.models import ConversationEvent, EventKind, Message, Role
from chatwire.relay import OVERFLOW_NOTICE, EventRelay, replay_event
from chatwire.session import ChatSession
from chatwire.sinks import RelaySink
from chatwire.storage import memory_storage


class FakeBackend:
    name = "fake"

    def __init__(self):
        self.gate: asyncio.Event | None = None

    async def chat(self, messages, options=None):
        yield "re: "
        if self.gate is not None:
            await self.gate.wait()
        yield messages[-1].content


def make_session(relay=None, storage=None):
    storage = storage or memory_storage()
    relay = relay or EventRelay(storage.history)
    session = ChatSession("obs", FakeBackend(), Broadcaster([RelaySink(relay, "obs")]), storage)
    return session, relay, storage


async def _next(events, timeout=1.0):
    return await asyncio.wait_for(events.__anext__(), timeout)


async def _started(events):
    """Start iterating so the subscriber attaches; returns the pending first item."""
    task = asyncio.ensure_future(events.__anext__())
    await asyncio.sleep(0)
    return task


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------

def test_replay_event_kinds():
    """Stored messages replay as the events that finalized them."""
    assert replay_event(Message(role=Role.USER, content="q"), 0).kind is EventKind.USER_MESSAGE
    done = replay_event(Message(role=Role.ASSISTANT, content="a"), 1)
    assert done.kind is EventKind.COMPLETE
    assert done.seq == 1
    assert done.replay is True
    assert replay_event(Message(role=Role.SYSTEM, content="s"), 2).kind is EventKind.SYSTEM


@pytest.mark.asyncio
async def test_late_observer_gets_history_then_live_turn():
    """Three finished turns replay in order, then turn four arrives live, once."""
    session, relay, _ = make_session()
    for text in ["one", "two", "three"]:
        await session.submit(text)

    events = relay.subscribe("obs")
    replayed = [await _next(events) for _ in range(6)]
    assert [e.kind for e in replayed] == [EventKind.USER_MESSAGE, EventKind.COMPLETE] * 3
    assert [e.content for e in replayed] == ["one", "re: one", "two", "re: two", "three", "re: three"]
    assert all(e.replay for e in replayed)
    assert [e.seq for e in replayed] == list(range(6))

    await session.submit("four")
    live = [await _next(events) for _ in range(5)]
    assert [e.kind for e in live] == [
        EventKind.USER_MESSAGE, EventKind.PROMPT,
        EventKind.CHUNK, EventKind.CHUNK, EventKind.COMPLETE,
    ]
    assert live[0].seq == 6
    assert live[-1].content == "re: four"
    assert not any(e.replay for e in live)
    await events.aclose()


@pytest.mark.asyncio
async def test_observer_joining_mid_turn_sees_no_duplicates():
    """An observer that attaches mid-turn gets the user message once and the reply live."""
    session, relay, _ = make_session()
    session.backend.gate = asyncio.Event()
    turn = asyncio.ensure_future(session.submit("hello"))
    await asyncio.sleep(0.01)  # user message stored, first chunk sent

    events = relay.subscribe("obs")
    first = await _next(events)
    assert first.kind is EventKind.USER_MESSAGE
    assert first.replay

    session.backend.gate.set()
    await turn
    rest = []
    while True:
        event = await _next(events)
        rest.append(event)
        if event.kind is EventKind.COMPLETE:
            break
    assert [e.kind for e in rest] == [EventKind.CHUNK, EventKind.COMPLETE]
    assert rest[-1].content == "re: hello"
    await events.aclose()


@pytest.mark.asyncio
async def test_subscribe_to_empty_session_waits_for_live():
    """An unknown session replays nothing and follows live events."""
    relay = EventRelay(memory_storage().history)
    events = relay.subscribe("quiet")
    pending = await _started(events)
    assert relay.publish("quiet", ConversationEvent(kind=EventKind.INFO, content="ping")) == 1
    assert (await asyncio.wait_for(pending, 1)).content == "ping"
    await events.aclose()


@pytest.mark.asyncio
async def test_clear_resets_replay_boundary():
    """After a live clear, new turns starting at seq 0 are delivered."""
    session, relay, _ = make_session()
    await session.submit("old")

    events = relay.subscribe("obs")
    assert (await _next(events)).content == "old"
    assert (await _next(events)).content == "re: old"

    await session.clear()
    assert (await _next(events)).kind is EventKind.CLEAR
    assert (await _next(events)).kind is EventKind.SYSTEM

    await session.submit("new")
    user_event = await _next(events)
    assert user_event.kind is EventKind.USER_MESSAGE
    assert user_event.seq == 0
    await events.aclose()


# ---------------------------------------------------------------------------
# Fan-out, overflow and cleanup
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_publish_without_subscribers():
    """Publishing to a channel nobody listens on delivers to nobody."""
    relay = EventRelay(memory_storage().history)
    assert relay.publish("nobody", ConversationEvent(kind=EventKind.INFO)) == 0


@pytest.mark.asyncio
async def test_sessions_are_isolated():
    """Events for one session never reach another session's observers."""
    relay = EventRelay(memory_storage().history)
    a = relay.subscribe("a")
    pending = await _started(a)
    assert relay.publish("b", ConversationEvent(kind=EventKind.INFO, content="for b")) == 0
    relay.publish("a", ConversationEvent(kind=EventKind.INFO, content="for a"))
    assert (await asyncio.wait_for(pending, 1)).content == "for a"
    await a.aclose()


@pytest.mark.asyncio
async def test_slow_observer_is_disconnected_on_overflow():
    """A full queue detaches the observer, which gets one warning and ends."""
    relay = EventRelay(memory_storage().history, max_queue=2)
    slow = relay.subscribe("s")
    fast = relay.subscribe("s")
    slow_first = await _started(slow)
    fast_first = await _started(fast)
    assert relay.subscriber_count("s") == 2

    def chunk(i):
        return ConversationEvent(kind=EventKind.CHUNK, content=str(i), seq=0)

    assert relay.publish("s", chunk(0)) == 2
    assert (await asyncio.wait_for(slow_first, 1)).content == "0"
    assert (await asyncio.wait_for(fast_first, 1)).content == "0"

    # slow stops reading; fast keeps up
    delivered = []
    for i in range(1, 4):
        delivered.append(relay.publish("s", chunk(i)))
        assert (await _next(fast)).content == str(i)
    assert delivered == [2, 2, 1]
    assert relay.subscriber_count("s") == 1

    tail = [event async for event in slow]
    assert len(tail) == 1
    assert tail[0].kind is EventKind.WARNING
    assert tail[0].content == OVERFLOW_NOTICE

    await fast.aclose()
    assert relay.subscriber_count("s") == 0


@pytest.mark.asyncio
async def test_aclose_detaches_subscriber():
    """Closing the stream releases the subscription."""
    relay = EventRelay(memory_storage().history)
    events = relay.subscribe("s")
    pending = await _started(events)
    assert relay.subscriber_count("s") == 1
    pending.cancel()
    with pytest.raises(asyncio.CancelledError):
        await pending
    await events.aclose()
    assert relay.subscriber_count("s") == 0


@pytest.mark.asyncio
async def test_cancelled_consumer_detaches():
    """Cancelling a task that is iterating the stream releases the subscription."""
    relay = EventRelay(memory_storage().history)

    async def consume():
        async for _ in relay.subscribe("s"):
            pass

    task = asyncio.ensure_future(consume())
    await asyncio.sleep(0.01)
    assert relay.subscriber_count("s") == 1
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert relay.subscriber_count("s") == 0

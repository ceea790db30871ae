"""
EventRelay: session-scoped pub/sub with history replay.

publish() hands an event to every current subscriber of the session's
channel without waiting on any of them. subscribe() yields the session's
stored history (as replay events) and then the live tail.

Replay and tail line up through ConversationEvent.seq: the subscriber is
attached before history is read, and live events whose seq falls inside
the replayed snapshot are dropped, so a finalized message is never seen
twice nor missed. A live clear event resets that boundary.

Each subscriber has a bounded queue. A subscriber that lets it fill up is
disconnected: its buffer is discarded, it gets one final warning event and
its stream ends. Reconnecting replays history again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from chatwire.models import ConversationEvent, EventKind, Message, Role
from chatwire.storage.history import HistoryStore
from chatwire.storage.keys import DEFAULT_CHANNEL_PREFIX, channel_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE = 256

OVERFLOW_NOTICE = "observer fell behind; reconnect to resume"

_REPLAY_KINDS = {
    Role.USER: EventKind.USER_MESSAGE,
    Role.ASSISTANT: EventKind.COMPLETE,
    Role.SYSTEM: EventKind.SYSTEM,
}

_OVERFLOW = object()


def replay_event(message: Message, seq: int) -> ConversationEvent:
    """Represent a stored message as the event that finalized it."""
    return ConversationEvent(
        kind=_REPLAY_KINDS[message.role],
        content=message.content,
        seq=seq,
        replay=True,
    )


class _Subscriber:
    __slots__ = ("queue",)

    def __init__(self, max_queue: int):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue)


class EventRelay:

    def __init__(
        self,
        history: HistoryStore,
        max_queue: int = DEFAULT_MAX_QUEUE,
        channel_prefix: str = DEFAULT_CHANNEL_PREFIX,
    ):
        self.history = history
        self.max_queue = max_queue
        self.channel_prefix = channel_prefix
        self._channels: dict[str, set[_Subscriber]] = {}

    def _key(self, session: str) -> str:
        return channel_key(session, self.channel_prefix)

    def subscriber_count(self, session: str) -> int:
        return len(self._channels.get(self._key(session), ()))

    def publish(self, session: str, event: ConversationEvent) -> int:
        """Offer an event to every subscriber. Returns how many accepted it."""
        key = self._key(session)
        subscribers = self._channels.get(key)
        if not subscribers:
            return 0

        delivered = 0
        for sub in list(subscribers):
            try:
                sub.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                self._disconnect_overflowed(key, sub)
        return delivered

    def _attach(self, key: str, sub: _Subscriber):
        self._channels.setdefault(key, set()).add(sub)
        logger.debug("Observer attached to %s (%d total)", key, len(self._channels[key]))

    def _detach(self, key: str, sub: _Subscriber):
        subscribers = self._channels.get(key)
        if subscribers is None:
            return
        subscribers.discard(sub)
        if not subscribers:
            del self._channels[key]
        logger.debug("Observer detached from %s", key)

    def _disconnect_overflowed(self, key: str, sub: _Subscriber):
        self._detach(key, sub)
        while not sub.queue.empty():
            sub.queue.get_nowait()
        sub.queue.put_nowait(_OVERFLOW)
        logger.warning("Observer on %s overflowed %d queued events, disconnecting", key, self.max_queue)

    async def subscribe(self, session: str) -> AsyncIterator[ConversationEvent]:
        """
        Replay the session's history, then follow it live.
        The subscription is released when the consumer stops iterating,
        closes the generator or is cancelled.
        """
        key = self._key(session)
        sub = _Subscriber(self.max_queue)
        self._attach(key, sub)
        try:
            snapshot = await self.history.read_all(session)
            boundary = len(snapshot)
            for seq, message in enumerate(snapshot):
                yield replay_event(message, seq)

            while True:
                item = await sub.queue.get()
                if item is _OVERFLOW:
                    yield ConversationEvent(kind=EventKind.WARNING, content=OVERFLOW_NOTICE)
                    return
                if item.kind is EventKind.CLEAR:
                    boundary = 0
                elif item.seq is not None and item.seq < boundary:
                    continue
                yield item
        finally:
            self._detach(key, sub)

"""
ChatSession: one named conversation.

Holds the ordered messages, drives the provider for each user turn and
emits the event lifecycle through the Broadcaster:

    user_message → prompt → chunk* → complete      (success)
    user_message → prompt → chunk* → error         (provider failure)

An assistant message is appended only after the provider stream ends
normally, so a failed or cancelled turn never leaves a partial reply in
history. Durable writes are best-effort: a storage failure is shown as a
warning event and the conversation carries on.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing

from chatwire.backends.base import BaseBackend
from chatwire.broadcaster import Broadcaster
from chatwire.commands import HELP_TEXT, Command, parse_command
from chatwire.errors import StorageError, TransportError
from chatwire.models import (
    ChatOptions,
    ConversationEvent,
    EventKind,
    Message,
    Role,
    SessionMetadata,
    now_ms,
)
from chatwire.storage import SessionStorage
from chatwire.storage.keys import validate_session_name

logger = logging.getLogger(__name__)

ASSISTANT_PROMPT = "Assistant"
TITLE_LENGTH = 60


def _title_from(text: str) -> str:
    first_line = text.strip().splitlines()[0]
    return first_line[:TITLE_LENGTH]


class ChatSession:

    def __init__(
        self,
        name: str,
        backend: BaseBackend,
        broadcaster: Broadcaster,
        storage: SessionStorage,
        options: ChatOptions | None = None,
    ):
        self.name = validate_session_name(name)
        self.backend = backend
        self.broadcaster = broadcaster
        self.storage = storage
        self.options = options or ChatOptions()
        self._messages: list[Message] = []
        self._lock = asyncio.Lock()
        self._last_ts = 0

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    # ── Events ────────────────────────────────────────────────────────────

    def _timestamp(self) -> int:
        self._last_ts = max(self._last_ts, now_ms())
        return self._last_ts

    async def _emit(self, kind: EventKind, **payload) -> ConversationEvent:
        event = ConversationEvent(kind=kind, timestamp=self._timestamp(), **payload)
        report = await self.broadcaster.publish(event)
        if not report.ok:
            logger.warning("Session %s: %s", self.name, report.warning)
        return event

    async def welcome(self):
        await self._emit(EventKind.WELCOME, provider_name=self.backend.name)

    async def notify(self, kind: EventKind, content: str):
        """Emit an info/warning/system line that is not part of a turn."""
        await self._emit(kind, content=content)

    # ── Storage ───────────────────────────────────────────────────────────

    async def resume(self) -> int:
        """Load previously stored history for this session. Returns the count."""
        try:
            stored = await self.storage.history.read_all(self.name)
        except StorageError as e:
            await self._emit(EventKind.WARNING, content=f"Could not load history: {e}")
            return 0
        async with self._lock:
            self._messages = list(stored)
        if stored:
            await self._emit(
                EventKind.INFO,
                content=f"Resumed session '{self.name}' with {len(stored)} messages.",
            )
        return len(stored)

    async def _append(self, message: Message) -> int:
        """Append to the in-memory conversation and persist. Returns the position."""
        async with self._lock:
            seq = len(self._messages)
            self._messages.append(message)
            first_user = message.role is Role.USER and not any(
                m.role is Role.USER for m in self._messages[:-1]
            )

        try:
            await self.storage.history.append(self.name, message)
        except StorageError as e:
            logger.warning("Session %s: history append failed: %s", self.name, e)
            await self._emit(EventKind.WARNING, content=f"Could not save message: {e}")
            return seq

        try:
            title = None
            if first_user:
                existing = await self.storage.registry.get(self.name)
                if existing is None or not existing.title:
                    title = _title_from(message.content)
            await self.storage.registry.upsert(self.name, title=title)
        except StorageError as e:
            logger.warning("Session %s: metadata update failed: %s", self.name, e)
            await self._emit(EventKind.WARNING, content=f"Could not update session metadata: {e}")
        return seq

    async def state(self) -> tuple[list[Message], SessionMetadata | None]:
        """History and metadata as one consistent pair."""
        async with self._lock:
            return list(self._messages), await self.storage.registry.get(self.name)

    # ── Turns ─────────────────────────────────────────────────────────────

    async def submit(self, user_input: str) -> Message | None:
        """
        Run one turn. Returns the assistant message, or None if the
        provider failed. Raises ValueError for blank input, before any
        event or history change.
        """
        text = user_input.strip()
        if not text:
            raise ValueError("cannot submit an empty message")

        seq = await self._append(Message(role=Role.USER, content=text))
        reply_seq = seq + 1
        await self._emit(EventKind.USER_MESSAGE, content=text, seq=seq)
        await self._emit(EventKind.PROMPT, prompt_text=ASSISTANT_PROMPT, seq=reply_seq)

        parts: list[str] = []
        try:
            async with aclosing(self.backend.chat(self.messages, self.options)) as fragments:
                async for fragment in fragments:
                    parts.append(fragment)
                    await self._emit(EventKind.CHUNK, content=fragment, seq=reply_seq)
        except TransportError as e:
            logger.warning("Session %s: turn failed: %s", self.name, e)
            await self._emit(EventKind.ERROR, content=str(e))
            return None

        reply = Message(role=Role.ASSISTANT, content="".join(parts))
        await self._append(reply)
        await self._emit(EventKind.COMPLETE, content=reply.content, seq=reply_seq)
        return reply

    async def clear(self):
        """Drop the conversation history and zero the session metadata."""
        async with self._lock:
            self._messages.clear()
            try:
                await self.storage.reset(self.name)
            except StorageError as e:
                logger.warning("Session %s: reset failed: %s", self.name, e)
                await self._emit(EventKind.WARNING, content=f"Could not reset stored history: {e}")
        await self._emit(EventKind.CLEAR)
        await self._emit(EventKind.SYSTEM, content="Conversation history cleared.")

    async def handle_input(self, raw: str) -> bool:
        """
        Dispatch one line of user input. Returns False when the user
        asked to quit.
        """
        text = raw.strip()
        if not text:
            return True

        command = parse_command(text)
        if command is Command.QUIT:
            await self._emit(EventKind.SYSTEM, content="Goodbye!")
            return False
        if command is Command.CLEAR:
            await self.clear()
        elif command is Command.HELP:
            await self._emit(EventKind.SYSTEM, content=HELP_TEXT)
        elif command is Command.UNRECOGNIZED:
            await self._emit(EventKind.ERROR, content=f"Unknown command: {text}")
            await self._emit(EventKind.SYSTEM, content="Type /help for available commands.")
        else:
            await self.submit(text)
        return True

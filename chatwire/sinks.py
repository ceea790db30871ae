"""
Event sinks: the consumers a Broadcaster fans conversation events out to.

The set is closed:
  ConsoleSink   renders events to the terminal
  RelaySink     publishes events on the session's EventRelay channel
  WireTapSink   archives finalized events to the wiretap JSONL
"""

from __future__ import annotations

import abc
import sys
from typing import TextIO

from chatwire.commands import HELP_TEXT
from chatwire.models import ConversationEvent, EventKind
from chatwire.relay import EventRelay
from chatwire.wiretap import C_BOLD, C_ERROR, C_RESET, C_SYSTEM, WireLog

C_TITLE = "\033[96m"    # cyan
C_PROMPT = "\033[94m"   # blue
C_WARNING = "\033[93m"  # yellow


class EventSink(abc.ABC):
    name = "sink"

    @abc.abstractmethod
    async def send(self, event: ConversationEvent) -> None:
        ...

    async def close(self) -> None:
        pass


class ConsoleSink(EventSink):
    """Writes the conversation to a terminal stream as it happens."""

    name = "console"

    def __init__(self, stream: TextIO | None = None, color: bool = True):
        self.stream = stream or sys.stdout
        self.color = color

    def _paint(self, text: str, *codes: str) -> str:
        if not self.color or not codes:
            return text
        return "".join(codes) + text + C_RESET

    def render(self, event: ConversationEvent) -> str:
        kind = event.kind
        if kind is EventKind.WELCOME:
            return (
                self._paint(f"\nchatwire - {event.provider_name}", C_BOLD, C_TITLE) + "\n"
                + self._paint("Type your message and press Enter. " + HELP_TEXT, C_SYSTEM) + "\n"
            )
        if kind is EventKind.PROMPT:
            return self._paint(f"{event.prompt_text}: ", C_PROMPT)
        if kind is EventKind.CHUNK:
            return event.content
        if kind is EventKind.COMPLETE:
            return "\n\n"
        if kind is EventKind.ERROR:
            return self._paint(f"\n\nError: {event.content}\n", C_ERROR) + "\n"
        if kind is EventKind.WARNING:
            return self._paint(event.content, C_WARNING) + "\n"
        if kind is EventKind.SYSTEM:
            return self._paint(event.content, C_SYSTEM) + "\n"
        if kind is EventKind.INFO:
            return event.content + "\n"
        # user_message was typed locally; clear only matters to observers
        return ""

    async def send(self, event: ConversationEvent) -> None:
        text = self.render(event)
        if text:
            self.stream.write(text)
            self.stream.flush()


class RelaySink(EventSink):
    """Publishes every event on the session's relay channel."""

    name = "relay"

    def __init__(self, relay: EventRelay, session: str):
        self.relay = relay
        self.session = session

    async def send(self, event: ConversationEvent) -> None:
        self.relay.publish(self.session, event)


class WireTapSink(EventSink):
    """Archives finalized events to the wiretap log."""

    name = "wiretap"

    def __init__(self, wire: WireLog, session: str):
        self.wire = wire
        self.session = session

    async def send(self, event: ConversationEvent) -> None:
        self.wire.log(self.session, event)

    async def close(self) -> None:
        self.wire.close()

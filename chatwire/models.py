"""
Data models for chatwire.
These define the shape of data flowing between the session, the sinks,
the stores and any observer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum


def now_ms() -> int:
    """Wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    """A single finalized message in a conversation."""
    role: Role
    content: str

    def to_dict(self) -> dict:
        """Export in the OpenAI messages array format (what providers expect)."""
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        return cls(role=Role(data["role"]), content=data.get("content", ""))


class EventKind(str, Enum):
    WELCOME = "welcome"
    PROMPT = "prompt"
    USER_MESSAGE = "user_message"
    CHUNK = "chunk"
    COMPLETE = "complete"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"
    SYSTEM = "system"
    CLEAR = "clear"


@dataclass(frozen=True)
class ConversationEvent:
    """
    One unit crossing the sink boundary.

    seq is the history position the event belongs to (the user message for
    user_message, the pending assistant message for prompt/chunk/complete).
    Observers use it to line replayed history up with the live tail.
    """
    kind: EventKind
    timestamp: int = field(default_factory=now_ms)
    content: str = ""
    provider_name: str = ""
    prompt_text: str = ""
    seq: int | None = None
    replay: bool = False

    def to_dict(self) -> dict:
        payload = {}
        if self.content:
            payload["content"] = self.content
        if self.provider_name:
            payload["providerName"] = self.provider_name
        if self.prompt_text:
            payload["promptText"] = self.prompt_text
        data = {"type": self.kind.value, "payload": payload, "timestamp": self.timestamp}
        if self.seq is not None:
            data["seq"] = self.seq
        if self.replay:
            data["replay"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict) -> ConversationEvent:
        payload = data.get("payload") or {}
        return cls(
            kind=EventKind(data["type"]),
            timestamp=int(data.get("timestamp", 0)),
            content=payload.get("content", ""),
            provider_name=payload.get("providerName", ""),
            prompt_text=payload.get("promptText", ""),
            seq=data.get("seq"),
            replay=bool(data.get("replay", False)),
        )


@dataclass
class SessionMetadata:
    """Discovery record for one session. Timestamps are epoch milliseconds."""
    name: str
    created_at: int
    last_message: int
    message_count: int = 0
    title: str | None = None

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "createdAt": self.created_at,
            "lastMessage": self.last_message,
            "messageCount": self.message_count,
        }
        if self.title is not None:
            data["title"] = self.title
        return data


@dataclass
class ChatOptions:
    """Optional generation parameters for one provider call."""
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None

"""
Error taxonomy for chatwire.

    DecodeError     one malformed record in a provider stream (logged, skipped)
    TransportError  the provider connection or stream failed (ends the turn)
    SinkError       one broadcast destination failed (collected, never fatal)
    StorageError    a history/metadata read or write failed
"""

from __future__ import annotations


class ChatwireError(Exception):
    """Base class for every error chatwire raises on purpose."""


class DecodeError(ChatwireError):
    """A single provider record could not be interpreted."""

    def __init__(self, message: str, record: str = ""):
        super().__init__(message)
        self.record = record


class TransportError(ChatwireError):
    """The byte source behind a provider call failed before it finished."""


class SinkError(ChatwireError):
    """Delivery of an event to one sink failed."""

    def __init__(self, sink: str, cause: BaseException):
        super().__init__(f"{sink}: {cause!r}")
        self.sink = sink
        self.cause = cause


class StorageError(ChatwireError):
    """A durable history or metadata operation failed."""

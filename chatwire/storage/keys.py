"""
Storage key derivation.

Every key chatwire stores or publishes under is derived here from a
validated session name, so the history, metadata and channel keys for a
session can never drift apart.
"""

from __future__ import annotations

import re
from uuid import uuid4

SESSION_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")

DEFAULT_CHANNEL_PREFIX = "chatwire:stream"


def validate_session_name(name: str) -> str:
    """Return the name unchanged, or raise ValueError if it cannot key storage."""
    if not isinstance(name, str) or not SESSION_NAME.match(name):
        raise ValueError(
            f"Invalid session name {name!r}: use 1-128 letters, digits, '.', '_' or '-'"
        )
    return name


def generate_session_name() -> str:
    return f"session-{uuid4().hex[:8]}"


def history_key(name: str) -> str:
    return f"session:{validate_session_name(name)}:messages"


def metadata_key(name: str) -> str:
    return f"session:{validate_session_name(name)}:metadata"


def channel_key(name: str, prefix: str = DEFAULT_CHANNEL_PREFIX) -> str:
    return f"{prefix}:{validate_session_name(name)}"

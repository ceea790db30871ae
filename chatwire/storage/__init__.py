"""
Session storage: history log + metadata registry behind one handle.

Usage:
    from chatwire.storage import open_storage
    storage, warning = open_storage(sqlite_path="./data/chatwire.db", ttl=None)
    ...
    storage.close()

open_storage never raises for an unusable database: it falls back to
in-memory storage and returns a warning string for the caller to show.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from chatwire.errors import StorageError
from chatwire.storage.history import HistoryStore, InMemoryHistoryStore, SQLiteHistoryStore
from chatwire.storage.keys import (
    channel_key,
    generate_session_name,
    history_key,
    metadata_key,
    validate_session_name,
)
from chatwire.storage.registry import (
    InMemorySessionRegistry,
    SessionRegistry,
    SQLiteSessionRegistry,
)
from chatwire.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


@dataclass
class SessionStorage:
    history: HistoryStore
    registry: SessionRegistry
    store: SQLiteStore | None = None

    @property
    def durable(self) -> bool:
        return self.store is not None

    async def reset(self, session: str):
        """Clear the session's history and zero its metadata as one step."""
        if self.store is not None:
            with self.store.transaction() as conn:
                SQLiteHistoryStore.clear_in(conn, session)
                return SQLiteSessionRegistry.reset_in(conn, session)
        # In memory: no suspension point between the two
        self.history.clear_now(session)
        return self.registry.reset_now(session)

    def close(self):
        if self.store is not None:
            self.store.close()


def memory_storage(ttl: int | None = None) -> SessionStorage:
    return SessionStorage(
        history=InMemoryHistoryStore(ttl=ttl),
        registry=InMemorySessionRegistry(),
    )


def open_storage(
    sqlite_path: str | None = None,
    ttl: int | None = None,
) -> tuple[SessionStorage, str | None]:
    """
    Open durable storage at sqlite_path, or in-memory storage when no path
    is given. Returns (storage, warning); warning is set only on fallback.
    """
    if not sqlite_path:
        return memory_storage(ttl), None
    try:
        store = SQLiteStore(sqlite_path)
    except StorageError as e:
        logger.warning("Durable storage unavailable, using memory: %s", e)
        return memory_storage(ttl), (
            f"Could not open storage: {e}. Falling back to in-memory storage."
        )
    return SessionStorage(
        history=SQLiteHistoryStore(store, ttl=ttl),
        registry=SQLiteSessionRegistry(store),
        store=store,
    ), None


__all__ = [
    "HistoryStore",
    "InMemoryHistoryStore",
    "SQLiteHistoryStore",
    "SessionRegistry",
    "InMemorySessionRegistry",
    "SQLiteSessionRegistry",
    "SQLiteStore",
    "SessionStorage",
    "memory_storage",
    "open_storage",
    "channel_key",
    "generate_session_name",
    "history_key",
    "metadata_key",
    "validate_session_name",
]

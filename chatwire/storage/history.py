"""
HistoryStore: durable, append-only, session-scoped message log.

Two implementations:
  - InMemoryHistoryStore: process-local, lost on exit
  - SQLiteHistoryStore:   rows in a shared SQLiteStore

Both support an optional ttl (seconds). Every append pushes the session
log's expiry out by ttl; once it passes, the whole log reads as empty and
is purged on the next access.
"""

from __future__ import annotations

import abc
import logging
import sqlite3

from chatwire.models import Message, now_ms
from chatwire.storage.keys import history_key
from chatwire.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class HistoryStore(abc.ABC):
    """Abstract session-keyed message log."""

    def __init__(self, ttl: int | None = None):
        self.ttl = ttl

    def _expiry(self) -> int | None:
        return now_ms() + self.ttl * 1000 if self.ttl else None

    @abc.abstractmethod
    async def append(self, session: str, message: Message) -> int:
        """Add a message to the end of the session's log. Returns its position."""
        ...

    @abc.abstractmethod
    async def read_all(self, session: str) -> list[Message]:
        """Full ordered log; an unknown session yields []."""
        ...

    @abc.abstractmethod
    async def clear(self, session: str) -> None:
        """Remove every entry for the session."""
        ...


class InMemoryHistoryStore(HistoryStore):

    def __init__(self, ttl: int | None = None):
        super().__init__(ttl)
        self._logs: dict[str, list[Message]] = {}
        self._expires: dict[str, int] = {}

    def _live(self, key: str) -> list[Message] | None:
        expires_at = self._expires.get(key)
        if expires_at is not None and expires_at <= now_ms():
            self._logs.pop(key, None)
            self._expires.pop(key, None)
            logger.debug("History %s expired", key)
        return self._logs.get(key)

    async def append(self, session: str, message: Message) -> int:
        key = history_key(session)
        log = self._live(key)
        if log is None:
            log = self._logs[key] = []
        log.append(message)
        expires_at = self._expiry()
        if expires_at is not None:
            self._expires[key] = expires_at
        return len(log) - 1

    async def read_all(self, session: str) -> list[Message]:
        return list(self._live(history_key(session)) or [])

    async def clear(self, session: str) -> None:
        self.clear_now(session)

    def clear_now(self, session: str) -> None:
        key = history_key(session)
        self._logs.pop(key, None)
        self._expires.pop(key, None)


class SQLiteHistoryStore(HistoryStore):

    def __init__(self, store: SQLiteStore, ttl: int | None = None):
        super().__init__(ttl)
        self.store = store

    @staticmethod
    def _purge_expired(conn: sqlite3.Connection, key: str):
        row = conn.execute(
            "SELECT expires_at FROM history_expiry WHERE key = ?", (key,)
        ).fetchone()
        if row is not None and row["expires_at"] <= now_ms():
            conn.execute("DELETE FROM history WHERE key = ?", (key,))
            conn.execute("DELETE FROM history_expiry WHERE key = ?", (key,))
            logger.debug("History %s expired", key)

    async def append(self, session: str, message: Message) -> int:
        key = history_key(session)
        with self.store.transaction() as conn:
            self._purge_expired(conn, key)
            conn.execute(
                "INSERT INTO history (key, role, content, created_at) VALUES (?, ?, ?, ?)",
                (key, message.role.value, message.content, now_ms()),
            )
            expires_at = self._expiry()
            if expires_at is not None:
                conn.execute(
                    "INSERT OR REPLACE INTO history_expiry (key, expires_at) VALUES (?, ?)",
                    (key, expires_at),
                )
            count = conn.execute(
                "SELECT COUNT(*) FROM history WHERE key = ?", (key,)
            ).fetchone()[0]
        return count - 1

    async def read_all(self, session: str) -> list[Message]:
        key = history_key(session)
        with self.store.transaction() as conn:
            self._purge_expired(conn, key)
            rows = conn.execute(
                "SELECT role, content FROM history WHERE key = ? ORDER BY id",
                (key,),
            ).fetchall()
        return [Message.from_dict(dict(r)) for r in rows]

    async def clear(self, session: str) -> None:
        with self.store.transaction() as conn:
            self.clear_in(conn, session)

    @staticmethod
    def clear_in(conn: sqlite3.Connection, session: str):
        """Delete the session's log inside an open transaction."""
        key = history_key(session)
        conn.execute("DELETE FROM history WHERE key = ?", (key,))
        conn.execute("DELETE FROM history_expiry WHERE key = ?", (key,))

"""
SessionRegistry: discoverable per-session metadata, kept apart from the
message bodies.

upsert() is the "a message was appended" path: it creates the record on
first use, applies the given fields, bumps message_count by one unless a
count is given, and always refreshes last_message. list() is ordered by
last_message, most recent first; discovery UIs rely on that order.
"""

from __future__ import annotations

import abc
import logging
import sqlite3

from chatwire.models import SessionMetadata, now_ms
from chatwire.storage.keys import metadata_key, validate_session_name
from chatwire.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


class SessionRegistry(abc.ABC):
    """Abstract store of SessionMetadata records."""

    @abc.abstractmethod
    async def upsert(
        self,
        session: str,
        *,
        last_message: int | None = None,
        message_count: int | None = None,
        title: str | None = None,
    ) -> SessionMetadata:
        ...

    @abc.abstractmethod
    async def reset(self, session: str) -> SessionMetadata:
        """Zero the message count and touch last_message; created_at survives."""
        ...

    @abc.abstractmethod
    async def get(self, session: str) -> SessionMetadata | None:
        """The record, or None when the session is unknown."""
        ...

    @abc.abstractmethod
    async def list(self) -> list[SessionMetadata]:
        ...

    @abc.abstractmethod
    async def delete(self, session: str) -> bool:
        """Remove a record. Returns False if there was none."""
        ...


class InMemorySessionRegistry(SessionRegistry):

    def __init__(self):
        self._records: dict[str, SessionMetadata] = {}

    async def upsert(self, session, *, last_message=None, message_count=None, title=None):
        key = metadata_key(session)
        now = now_ms()
        record = self._records.get(key)
        if record is None:
            record = self._records[key] = SessionMetadata(
                name=session, created_at=now, last_message=now,
            )
        if title is not None:
            record.title = title
        if message_count is not None:
            record.message_count = message_count
        else:
            record.message_count += 1
        record.last_message = last_message if last_message is not None else now
        return SessionMetadata(**vars(record))

    async def reset(self, session):
        return self.reset_now(session)

    def reset_now(self, session: str) -> SessionMetadata:
        key = metadata_key(session)
        now = now_ms()
        record = self._records.get(key)
        if record is None:
            record = self._records[key] = SessionMetadata(
                name=session, created_at=now, last_message=now,
            )
        record.message_count = 0
        record.last_message = now
        return SessionMetadata(**vars(record))

    async def get(self, session):
        record = self._records.get(metadata_key(session))
        return SessionMetadata(**vars(record)) if record else None

    async def list(self):
        records = [SessionMetadata(**vars(r)) for r in self._records.values()]
        return sorted(records, key=lambda r: r.last_message, reverse=True)

    async def delete(self, session):
        return self._records.pop(metadata_key(session), None) is not None


def _row_to_metadata(row: sqlite3.Row) -> SessionMetadata:
    return SessionMetadata(
        name=row["name"],
        created_at=row["created_at"],
        last_message=row["last_message"],
        message_count=row["message_count"],
        title=row["title"],
    )


class SQLiteSessionRegistry(SessionRegistry):

    def __init__(self, store: SQLiteStore):
        self.store = store

    @staticmethod
    def _fetch(conn: sqlite3.Connection, key: str) -> SessionMetadata | None:
        row = conn.execute("SELECT * FROM sessions WHERE key = ?", (key,)).fetchone()
        return _row_to_metadata(row) if row else None

    async def upsert(self, session, *, last_message=None, message_count=None, title=None):
        key = metadata_key(session)
        now = now_ms()
        with self.store.transaction() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO sessions
                   (key, name, created_at, last_message, message_count)
                   VALUES (?, ?, ?, ?, 0)""",
                (key, session, now, now),
            )
            if title is not None:
                conn.execute("UPDATE sessions SET title = ? WHERE key = ?", (title, key))
            if message_count is not None:
                conn.execute(
                    "UPDATE sessions SET message_count = ? WHERE key = ?",
                    (message_count, key),
                )
            else:
                conn.execute(
                    "UPDATE sessions SET message_count = message_count + 1 WHERE key = ?",
                    (key,),
                )
            conn.execute(
                "UPDATE sessions SET last_message = ? WHERE key = ?",
                (last_message if last_message is not None else now, key),
            )
            return self._fetch(conn, key)

    async def reset(self, session):
        with self.store.transaction() as conn:
            return self.reset_in(conn, session)

    @classmethod
    def reset_in(cls, conn: sqlite3.Connection, session: str) -> SessionMetadata:
        """Reset the record inside an open transaction."""
        key = metadata_key(session)
        now = now_ms()
        conn.execute(
            """INSERT OR IGNORE INTO sessions
               (key, name, created_at, last_message, message_count)
               VALUES (?, ?, ?, ?, 0)""",
            (key, validate_session_name(session), now, now),
        )
        conn.execute(
            "UPDATE sessions SET message_count = 0, last_message = ? WHERE key = ?",
            (now, key),
        )
        return cls._fetch(conn, key)

    async def get(self, session):
        with self.store.transaction() as conn:
            return self._fetch(conn, metadata_key(session))

    async def list(self):
        with self.store.transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions ORDER BY last_message DESC"
            ).fetchall()
        return [_row_to_metadata(r) for r in rows]

    async def delete(self, session):
        with self.store.transaction() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE key = ?", (metadata_key(session),))
        deleted = cur.rowcount > 0
        if deleted:
            logger.info("Deleted session metadata for %s", session)
        return deleted

"""
SQLite connection lifecycle for durable history and session metadata.
One SQLiteStore per database file, opened once, shared by reference with
the history store and the session registry, closed exactly once.
"""

import sqlite3
import logging
import threading
from pathlib import Path
from contextlib import contextmanager

from chatwire.errors import StorageError

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS history_expiry (
    key TEXT PRIMARY KEY,
    expires_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS sessions (
    key TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    last_message INTEGER NOT NULL,
    message_count INTEGER NOT NULL DEFAULT 0,
    title TEXT DEFAULT NULL
);

CREATE INDEX IF NOT EXISTS idx_history_key
    ON history(key, id);
CREATE INDEX IF NOT EXISTS idx_sessions_last_message
    ON sessions(last_message);
"""


class SQLiteStore:
    """Thread-safe owner of a single SQLite connection."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self._lock = threading.RLock()
        self._depth = 0
        try:
            if str(db_path) != ":memory:":
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn: sqlite3.Connection | None = sqlite3.connect(
                str(db_path), check_same_thread=False
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(CREATE_TABLES)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Could not open SQLite store at {db_path}: {e}") from e
        logger.info("SQLite store initialized at %s", self.db_path)

    @property
    def closed(self) -> bool:
        return self._conn is None

    @contextmanager
    def transaction(self):
        """
        Run a block in one transaction and yield the connection.
        Nested blocks join the outermost transaction.
        """
        with self._lock:
            if self._conn is None:
                raise StorageError(f"SQLite store at {self.db_path} is closed")
            conn = self._conn
            self._depth += 1
            try:
                yield conn
                if self._depth == 1:
                    conn.commit()
            except sqlite3.Error as e:
                if self._depth == 1:
                    conn.rollback()
                raise StorageError(f"SQLite operation failed: {e}") from e
            except BaseException:
                if self._depth == 1:
                    conn.rollback()
                raise
            finally:
                self._depth -= 1

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("SQLite store at %s closed", self.db_path)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

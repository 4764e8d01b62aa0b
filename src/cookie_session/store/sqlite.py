from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..errors import ConfigurationError, CorruptRecordError
from ..models import SessionRecord
from .base import SessionStore, StoreEvent

logger = logging.getLogger(__name__)


_SESSIONS_DDL = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    expires TEXT
);
"""

_CREATE_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires);",
]


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteStore(SessionStore):
    """SQLite-backed session store.

    Blocking sqlite3 calls run in a worker thread; writes are serialised by an
    asyncio lock. Expiry is evaluated lazily on :meth:`get`.
    """

    def __init__(self, db_path: str) -> None:
        super().__init__()
        # Every call opens its own connection, so an in-memory database would not persist.
        if not db_path or db_path.strip() == ":memory:":
            raise ConfigurationError("SQLiteStore needs a database file path, not :memory:")
        path = Path(db_path)
        if not path.is_absolute():
            path = Path.cwd() / path
        if path.suffix != ".db":
            path = path.with_suffix(".db")
        self._db_path = str(path)
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Initialise the schema and report the store as working."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.execute(_SESSIONS_DDL)
                for statement in _CREATE_INDEXES:
                    connection.execute(statement)
                connection.commit()

        await asyncio.to_thread(_init)
        logger.info("Session database initialised at %s", self._db_path)
        self.emit(StoreEvent.WORK)

    async def close(self) -> None:
        self.emit(StoreEvent.DISCONNECT)

    async def get(self, sid: str) -> Optional[SessionRecord]:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM sessions WHERE id = ?",
            (sid,),
        )
        if row is None:
            return None

        try:
            record = SessionRecord.from_json(row["data"])
        except CorruptRecordError as exc:
            logger.warning("Dropping session %s: %s", sid, exc)
            await self.destroy(sid)
            return None

        if record.is_expired(datetime.now(timezone.utc)):
            logger.debug("Session %s expired", sid)
            await self.destroy(sid)
            return None
        return record

    async def set(self, sid: str, record: SessionRecord) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO sessions (id, data, expires) VALUES (?, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET data = excluded.data, expires = excluded.expires",
                (sid, record.to_json(), record.cookie.get("expires")),
            )

    async def touch(self, sid: str, record: SessionRecord) -> None:
        current = await self.get(sid)
        if current is None:
            return
        current.cookie = dict(record.cookie)
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "UPDATE sessions SET data = ?, expires = ? WHERE id = ?",
                (current.to_json(), current.cookie.get("expires"), sid),
            )

    async def destroy(self, sid: str) -> None:
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                "DELETE FROM sessions WHERE id = ?",
                (sid,),
            )

    async def clear(self) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._execute, "DELETE FROM sessions")

    async def length(self) -> int:
        row = await asyncio.to_thread(self._fetchone, "SELECT COUNT(*) AS total FROM sessions")
        return int(row["total"]) if row else 0

    def _execute(self, query: str, params: tuple = ()) -> None:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            connection.execute(query, params)
            connection.commit()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchone()

from __future__ import annotations

import logging

from .cookie import Cookie
from .models import SessionRecord
from .store import SessionStore

logger = logging.getLogger(__name__)


class Session:
    """A live session: id, cookie attributes and the store it persists to.

    Operations here only affect the session and its store, never the
    request-scoped slot of a session context.
    """

    def __init__(self, session_id: str, cookie: Cookie, store: SessionStore) -> None:
        self._id = session_id
        self.cookie = cookie
        self._store = store

    @property
    def id(self) -> str:
        return self._id

    @property
    def store(self) -> SessionStore:
        return self._store

    def to_record(self) -> SessionRecord:
        return SessionRecord(id=self._id, cookie=self.cookie.data)

    async def save(self) -> "Session":
        await self._store.set(self._id, self.to_record())
        return self

    def touch(self) -> "Session":
        """Re-arm expiry from ``original_max_age`` without changing that baseline."""
        if self.cookie.original_max_age is not None:
            self.cookie.max_age = self.cookie.original_max_age
        return self

    async def destroy(self) -> "Session":
        await self._store.destroy(self._id)
        return self

    async def reload(self) -> "Session":
        record = await self._store.get(self._id)
        if record is None:
            logger.debug("Session %s not found on reload; keeping local state", self._id)
            return self
        self.cookie = Cookie.from_data(record.cookie)
        return self

    def __repr__(self) -> str:
        return f"Session(id={self._id!r}, cookie={self.cookie!r})"


def hydrate(record: SessionRecord, store: SessionStore) -> Session:
    """Rebuild a live session from a persisted record."""
    return Session(record.id, Cookie.from_data(record.cookie), store)

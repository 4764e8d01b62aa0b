from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from ..errors import CorruptRecordError
from ..models import SessionRecord
from .base import SessionStore

logger = logging.getLogger(__name__)


class MemoryStore(SessionStore):
    """Process-local store keeping each record as serialised JSON text.

    Expired records are removed lazily when read; there is no sweeper.
    """

    def __init__(self) -> None:
        super().__init__()
        self._sessions: dict[str, str] = {}

    async def get(self, sid: str) -> Optional[SessionRecord]:
        raw = self._sessions.get(sid)
        if raw is None:
            return None

        try:
            record = SessionRecord.from_json(raw)
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
        self._sessions[sid] = record.to_json()

    async def touch(self, sid: str, record: SessionRecord) -> None:
        current = await self.get(sid)
        if current is None:
            return
        current.cookie = dict(record.cookie)
        await self.set(sid, current)

    async def destroy(self, sid: str) -> None:
        self._sessions.pop(sid, None)

    async def clear(self) -> None:
        self._sessions = {}

    async def length(self) -> int:
        return len(self._sessions)

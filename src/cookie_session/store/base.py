from __future__ import annotations

import abc
import logging
from enum import Enum
from typing import Callable, Optional

from ..models import SessionRecord

logger = logging.getLogger(__name__)


class StoreEvent(str, Enum):
    """Out-of-band connectivity notifications emitted by a store."""

    WORK = "work"
    DISCONNECT = "disconnect"
    BLOCK = "block"


StoreListener = Callable[[StoreEvent], None]


class SessionStore(abc.ABC):
    """Persistence contract for session records.

    Implementations backed by real I/O must tolerate concurrent calls for
    distinct ids; serialising calls for the same id is left to the store.
    """

    def __init__(self) -> None:
        self._listeners: list[StoreListener] = []

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register ``listener`` for connectivity events and return an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: StoreEvent | str) -> None:
        event = StoreEvent(event)
        logger.debug("%s emitted %s", type(self).__name__, event.value)
        for listener in list(self._listeners):
            listener(event)

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abc.abstractmethod
    async def get(self, sid: str) -> Optional[SessionRecord]:
        """Return the record for ``sid``, or ``None`` if absent, expired or corrupt."""

    @abc.abstractmethod
    async def set(self, sid: str, record: SessionRecord) -> None:
        ...

    @abc.abstractmethod
    async def touch(self, sid: str, record: SessionRecord) -> None:
        """Replace only the cookie of an existing record; no-op when ``sid`` is unknown."""

    @abc.abstractmethod
    async def destroy(self, sid: str) -> None:
        ...

    @abc.abstractmethod
    async def clear(self) -> None:
        ...

    @abc.abstractmethod
    async def length(self) -> int:
        ...

"""Store connectivity state shared by every request of one session context.

``work`` and ``disconnect`` events settle the state and release every request
parked while the store was blocked; ``block`` parks new requests until one of
those events arrives. Waiters are plain futures so a cancelled request simply
drops out of the queue.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum

from .store import StoreEvent

logger = logging.getLogger(__name__)


class ConnectivityState(str, Enum):
    WORKING = "working"
    DISCONNECTED = "disconnected"
    BLOCKED = "blocked"


_TRANSITIONS = {
    StoreEvent.WORK: ConnectivityState.WORKING,
    StoreEvent.DISCONNECT: ConnectivityState.DISCONNECTED,
    StoreEvent.BLOCK: ConnectivityState.BLOCKED,
}


def _deliver(waiter: asyncio.Future, state: ConnectivityState) -> None:
    if not waiter.done():
        waiter.set_result(state)


class Connectivity:
    def __init__(self) -> None:
        self._state = ConnectivityState.WORKING
        self._waiters: list[asyncio.Future] = []
        self._lock = threading.Lock()

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def pending(self) -> int:
        """Number of requests currently parked on a blocked store."""
        with self._lock:
            return len(self._waiters)

    def handle(self, event: StoreEvent) -> None:
        """Apply a store event; usable directly as a store listener."""
        state = _TRANSITIONS[StoreEvent(event)]
        with self._lock:
            self._state = state
            if state is ConnectivityState.BLOCKED:
                waiters: list[asyncio.Future] = []
            else:
                waiters, self._waiters = self._waiters, []

        if state is not ConnectivityState.WORKING:
            logger.warning("Session store is %s", state.value)
        elif waiters:
            logger.info("Session store working again; releasing %d waiting request(s)", len(waiters))

        # Resolution is scheduled on each waiter's loop rather than applied inline.
        for waiter in waiters:
            waiter.get_loop().call_soon_threadsafe(_deliver, waiter, state)

    async def wait(self) -> ConnectivityState:
        """Return the current state, suspending while the store is blocked."""
        with self._lock:
            if self._state is not ConnectivityState.BLOCKED:
                return self._state
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)

        try:
            return await waiter
        finally:
            with self._lock:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

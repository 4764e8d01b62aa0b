from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, status

from .config import get_str_env, load_session_options
from .context import SessionContext
from .errors import ConfigurationError
from .session import Session
from .store import MemoryStore, SessionStore, SQLiteStore

logger = logging.getLogger(__name__)

_SESSION_CONTEXT: Optional[SessionContext] = None


def _store_from_env() -> SessionStore:
    backend = get_str_env("SESSION_STORE", "memory").lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "sqlite":
        return SQLiteStore(get_str_env("SESSION_DB_PATH", "sessions.db"))
    raise ConfigurationError(f"Unsupported SESSION_STORE backend: {backend!r}")


def initialise_session_context() -> SessionContext:
    """Create the session context from ``SESSION_*`` environment variables."""
    global _SESSION_CONTEXT
    if _SESSION_CONTEXT is not None:
        return _SESSION_CONTEXT

    context = SessionContext.from_options(load_session_options(), store=_store_from_env())
    _SESSION_CONTEXT = context
    logger.info("Initialised session context with %s (cookie %s)", type(context.store).__name__, context.name)
    return context


def set_session_context(context: Optional[SessionContext]) -> None:
    global _SESSION_CONTEXT
    _SESSION_CONTEXT = context


def get_session_context() -> SessionContext:
    if _SESSION_CONTEXT is None:
        raise RuntimeError("Session context has not been initialised")
    return _SESSION_CONTEXT


async def require_session(context: SessionContext = Depends(get_session_context)) -> Session:
    session = context.session
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No active session")
    return session

# Copyright (c) 2025 Bytedance Ltd. and/or its affiliates
# SPDX-License-Identifier: MIT

"""Signed cookie sessions with pluggable stores for ASGI applications."""

from typing import TYPE_CHECKING

from .config import SessionOptions
from .connectivity import Connectivity, ConnectivityState
from .context import SessionContext
from .cookie import Cookie, CookieOptions, SameSite
from .errors import ConfigurationError, CorruptRecordError, SessionError
from .middleware import SessionProvider, merge_headers
from .models import SessionRecord
from .session import Session, hydrate
from .signer import sign, sign_cookie, unsign, unsign_cookie
from .store import MemoryStore, SessionStore, SQLiteStore, StoreEvent

__all__ = [
    "ConfigurationError",
    "Connectivity",
    "ConnectivityState",
    "Cookie",
    "CookieOptions",
    "CorruptRecordError",
    "MemoryStore",
    "SQLiteStore",
    "SameSite",
    "Session",
    "SessionContext",
    "SessionError",
    "SessionOptions",
    "SessionProvider",
    "SessionRecord",
    "SessionStore",
    "StoreEvent",
    "hydrate",
    "merge_headers",
    "sign",
    "sign_cookie",
    "unsign",
    "unsign_cookie",
]

if TYPE_CHECKING:  # pragma: no cover
    from fastapi import FastAPI

    app: FastAPI


_app = None


def __getattr__(name: str):  # pragma: no cover - simple lazy import
    global _app
    if name == "app":
        if _app is None:
            from .app import create_app

            _app = create_app()
        return _app
    raise AttributeError(name)

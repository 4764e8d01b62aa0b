"""Request-scoped session context.

A :class:`SessionContext` owns a single slot per request, holding at most one
:class:`~cookie_session.session.Session`. The slot is a ``ContextVar`` bound
to a mutable holder, so everything running inside the request, including
framework sub-tasks and threadpool dependencies, sees the same session while
the provider middleware is active. The provider empties the slot when the
request leaves its scope.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Union
from uuid import uuid4

from starlette.middleware import Middleware
from starlette.requests import HTTPConnection

from .config import DEFAULT_COOKIE_NAME, SessionOptions
from .connectivity import Connectivity
from .cookie import Cookie, CookieOptions, render_set_cookie
from .errors import ConfigurationError
from .middleware import SessionProvider
from .session import Session, hydrate
from .signer import Secret, sign_cookie, unsign_cookie
from .store import MemoryStore, SessionStore

logger = logging.getLogger(__name__)

GenID = Callable[[], str]

_SECURE_SCHEMES = {"https", "wss"}


def _generate_session_id() -> str:
    return uuid4().hex


def _validate_secret(secret: Any) -> Secret:
    if isinstance(secret, str):
        if not secret:
            raise ConfigurationError("secret is required")
        return secret
    if not secret:
        raise ConfigurationError("secret is required")
    secrets = list(secret)
    if not all(isinstance(item, str) and item for item in secrets):
        raise ConfigurationError("secret option list must contain one or more non-empty strings")
    return secrets


@dataclass(slots=True)
class _Slot:
    session: Optional[Session] = None


class SessionContext:
    def __init__(
        self,
        secret: Secret,
        *,
        name: str = DEFAULT_COOKIE_NAME,
        genid: Optional[GenID] = None,
        store: Optional[SessionStore] = None,
        cookie: Union[CookieOptions, Mapping[str, Any], None] = None,
        proxy: bool = True,
    ) -> None:
        self.secret = _validate_secret(secret)
        self.name = name or DEFAULT_COOKIE_NAME
        self.genid: GenID = genid or _generate_session_id
        self.store: SessionStore = store if store is not None else MemoryStore()
        if isinstance(cookie, CookieOptions):
            self.cookie_options = cookie
        else:
            self.cookie_options = CookieOptions.model_validate(dict(cookie or {}))
        self.proxy = proxy

        self.connectivity = Connectivity()
        self._unsubscribe = self.store.subscribe(self.connectivity.handle)
        self._slot: ContextVar[Optional[_Slot]] = ContextVar(f"cookie_session_slot_{id(self):x}", default=None)

    @classmethod
    def from_options(
        cls,
        options: SessionOptions,
        *,
        store: Optional[SessionStore] = None,
        genid: Optional[GenID] = None,
    ) -> "SessionContext":
        return cls(
            options.secret,
            name=options.name,
            genid=genid,
            store=store,
            cookie=options.cookie,
            proxy=options.proxy,
        )

    # -- slot -----------------------------------------------------------------

    def _enter(self) -> tuple[_Slot, Token]:
        """Open a private slot for one request.

        A session bound before the request started is moved into the new slot,
        so it is handed to exactly one request.
        """
        slot = _Slot()
        outer = self._slot.get()
        if outer is not None and outer.session is not None:
            slot.session, outer.session = outer.session, None
        return slot, self._slot.set(slot)

    def _exit(self, slot: _Slot, token: Token) -> None:
        slot.session = None
        self._slot.reset(token)

    def _bind(self, session: Session) -> Session:
        slot = self._slot.get()
        if slot is None:
            slot = _Slot()
            self._slot.set(slot)
        if slot.session is not None:
            logger.debug("Session %s already bound; ignoring %s", slot.session.id, session.id)
            return slot.session
        slot.session = session
        return session

    @property
    def session(self) -> Optional[Session]:
        slot = self._slot.get()
        return slot.session if slot is not None else None

    @property
    def id(self) -> Optional[str]:
        session = self.session
        return session.id if session is not None else None

    @property
    def cookie(self) -> Optional[Cookie]:
        session = self.session
        return session.cookie if session is not None else None

    # -- operations on the bound session ------------------------------------

    def generate(self) -> Session:
        """Bind a brand-new session to the current request."""
        current = self.session
        if current is not None:
            return current
        session = Session(self.genid(), Cookie.from_options(self.cookie_options), self.store)
        logger.debug("Generated session %s", session.id)
        return self._bind(session)

    async def destroy(self) -> Optional[Session]:
        """Remove the bound session from the store and empty the slot."""
        slot = self._slot.get()
        session = slot.session if slot is not None else None
        if session is None:
            return None
        await session.destroy()
        slot.session = None
        return session

    async def regenerate(self) -> Session:
        await self.destroy()
        return self.generate()

    def touch(self) -> Optional[Session]:
        session = self.session
        if session is not None:
            session.touch()
        return session

    # -- request handling ----------------------------------------------------

    def in_scope(self, path: str) -> bool:
        return path.startswith(self.cookie_options.path or "/")

    async def resolve(self, connection: HTTPConnection) -> Session:
        """Hydrate the session named by the request cookie, or generate a new one."""
        raw = connection.cookies.get(self.name)
        sid = unsign_cookie(raw, self.secret) if raw else None
        if sid is None:
            if raw:
                logger.debug("Ignoring session cookie with an invalid signature")
            return self.generate()

        record = await self.store.get(sid)
        if record is None:
            logger.debug("Session %s not found in store; generating a new one", sid)
            return self.generate()
        return self._bind(hydrate(record, self.store))

    def is_secure(self, connection: HTTPConnection) -> bool:
        if connection.scope.get("scheme") in _SECURE_SCHEMES:
            return True
        if not self.proxy:
            return False
        forwarded = connection.headers.get("x-forwarded-proto", "")
        return forwarded.split(",")[0].strip().lower() == "https"

    def should_set_cookie(self, connection: HTTPConnection, session: Session) -> bool:
        return not session.cookie.secure or self.is_secure(connection)

    def set_cookie_header(self, session: Session) -> str:
        return render_set_cookie(self.name, sign_cookie(session.id, self.secret), session.cookie)

    def provider(self) -> Middleware:
        """Middleware entry installing the session provider for this context."""
        return Middleware(SessionProvider, context=self)

    async def close(self) -> None:
        await self.store.close()
        self._unsubscribe()

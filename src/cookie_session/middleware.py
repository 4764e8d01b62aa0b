from __future__ import annotations

import logging
from http.cookies import CookieError, SimpleCookie
from typing import TYPE_CHECKING, Iterable

from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .connectivity import ConnectivityState

if TYPE_CHECKING:  # pragma: no cover
    from .context import SessionContext

logger = logging.getLogger(__name__)

RawHeaders = list[tuple[bytes, bytes]]


def _sets_cookie(header_value: bytes, name: str) -> bool:
    parsed: SimpleCookie = SimpleCookie()
    try:
        parsed.load(header_value.decode("latin-1"))
    except CookieError:
        return False
    return name in parsed


def merge_headers(downstream: Iterable[tuple[bytes, bytes]], cookie_name: str, set_cookie: str) -> RawHeaders:
    """Merge downstream response headers with the session Set-Cookie header.

    Order matters: downstream headers go first and the session cookie is
    appended last, replacing any Set-Cookie the downstream response emitted
    for the same cookie name.
    """
    merged = [
        (key, value)
        for key, value in downstream
        if not (key.lower() == b"set-cookie" and _sets_cookie(value, cookie_name))
    ]
    merged.append((b"set-cookie", set_cookie.encode("latin-1")))
    return merged


class SessionProvider:
    """ASGI middleware resolving, persisting and emitting the request's session."""

    def __init__(self, app: ASGIApp, context: "SessionContext") -> None:
        self.app = app
        self.context = context

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        context = self.context
        slot, token = context._enter()
        try:
            state = await context.connectivity.wait()
            if state is not ConnectivityState.WORKING:
                logger.warning("Session store is %s; handling request without a session", state.value)
                await self.app(scope, receive, send)
                return

            connection = HTTPConnection(scope)
            if slot.session is None:
                if not context.in_scope(connection.url.path):
                    await self.app(scope, receive, send)
                    return
                await context.resolve(connection)

            async def send_wrapper(message: Message) -> None:
                if message["type"] == "http.response.start":
                    message = await self._finalize(connection, message)
                await send(message)

            await self.app(scope, receive, send_wrapper)
        finally:
            context._exit(slot, token)

    async def _finalize(self, connection: HTTPConnection, message: Message) -> Message:
        session = self.context.session
        if session is None:
            return message

        await session.save()
        if not self.context.should_set_cookie(connection, session):
            logger.debug("Not emitting session cookie over an insecure connection")
            return message

        merged = merge_headers(message.get("headers", []), self.context.name, self.context.set_cookie_header(session))
        return {**message, "headers": merged}

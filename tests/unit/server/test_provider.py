import asyncio
import time
from http.cookies import SimpleCookie
from typing import Optional

import httpx
import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient
from starlette.middleware import Middleware

from cookie_session.context import SessionContext
from cookie_session.middleware import SessionProvider, merge_headers
from cookie_session.signer import unsign_cookie
from cookie_session.store import MemoryStore, StoreEvent

NAME = "connect.sid"


class RecordingStore(MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, str]] = []

    async def get(self, sid):
        self.calls.append(("get", sid))
        return await super().get(sid)

    async def set(self, sid, record):
        self.calls.append(("set", sid))
        await super().set(sid, record)


class GenerateFirst:
    """Binds a session before the provider sees the request."""

    def __init__(self, app, context: SessionContext, issued: list[str]) -> None:
        self.app = app
        self.context = context
        self.issued = issued

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            self.issued.append(self.context.generate().id)
        await self.app(scope, receive, send)


def _make_app(context: SessionContext, *, outer: Optional[list[Middleware]] = None) -> FastAPI:
    app = FastAPI(middleware=[*(outer or []), context.provider()])

    @app.get("/whoami")
    async def whoami():
        return {"id": context.id}

    @app.get("/api/ping")
    async def ping():
        return {"id": context.id}

    @app.get("/outside")
    async def outside():
        return {"id": context.id}

    @app.get("/conflicting-cookies")
    async def conflicting_cookies():
        response = JSONResponse({"id": context.id})
        response.set_cookie("theme", "dark")
        response.set_cookie(NAME, "downstream-value")
        return response

    @app.get("/slow")
    async def slow():
        await asyncio.sleep(0.05)
        return {"id": context.id}

    @app.post("/logout")
    async def logout():
        await context.destroy()
        return {"id": context.id}

    return app


def _session_cookie(response: httpx.Response, name: str = NAME) -> Optional[str]:
    for header in response.headers.get_list("set-cookie"):
        parsed: SimpleCookie = SimpleCookie()
        parsed.load(header)
        if name in parsed:
            return parsed[name].value
    return None


def _get(client: TestClient, path: str, cookie: Optional[str] = None, **kwargs) -> httpx.Response:
    client.cookies.clear()
    headers = kwargs.pop("headers", {})
    if cookie is not None:
        headers["cookie"] = f"{NAME}={cookie}"
    return client.get(path, headers=headers, **kwargs)


def _length(context: SessionContext) -> int:
    return asyncio.run(context.store.length())


def test_new_session_is_issued_and_stored():
    context = SessionContext("s1")
    client = TestClient(_make_app(context), base_url="https://testserver")

    response = _get(client, "/whoami")
    assert response.status_code == 200
    cookie = _session_cookie(response)
    assert cookie is not None
    assert cookie.startswith("s:")
    assert unsign_cookie(cookie, "s1") == response.json()["id"]
    assert _length(context) == 1


def test_custom_cookie_name_and_attributes():
    context = SessionContext("s1", name="session.id", cookie={"max_age": 60000, "same_site": "Lax"})
    client = TestClient(_make_app(context), base_url="https://testserver")

    response = _get(client, "/whoami")
    header = response.headers["set-cookie"]
    assert header.startswith("session.id=")
    assert "expires=" in header.lower()
    assert "HttpOnly" in header
    assert "Secure" in header
    assert "SameSite=lax" in header
    assert _session_cookie(response, "session.id") is not None


def test_presented_cookie_resolves_same_session():
    context = SessionContext("s1")
    client = TestClient(_make_app(context), base_url="https://testserver")

    first = _get(client, "/whoami")
    cookie = _session_cookie(first)
    second = _get(client, "/whoami", cookie=cookie)

    assert second.json()["id"] == first.json()["id"]
    assert _session_cookie(second) == cookie
    assert _length(context) == 1


def test_tampered_cookie_yields_fresh_session_without_lookup():
    store = RecordingStore()
    context = SessionContext("s1", store=store)
    client = TestClient(_make_app(context), base_url="https://testserver")

    first = _get(client, "/whoami")
    original_id = first.json()["id"]
    store.calls.clear()

    second = _get(client, "/whoami", cookie=_session_cookie(first) + "x")
    assert second.json()["id"] != original_id
    assert unsign_cookie(_session_cookie(second), "s1") == second.json()["id"]
    assert [call for call in store.calls if call[0] == "get"] == []


def test_cleared_store_yields_new_session():
    context = SessionContext("s1")
    client = TestClient(_make_app(context), base_url="https://testserver")

    first = _get(client, "/whoami")
    cookie = _session_cookie(first)
    asyncio.run(context.store.clear())

    second = _get(client, "/whoami", cookie=cookie)
    assert second.status_code == 200
    assert second.json()["id"] != first.json()["id"]

    third = _get(client, "/whoami", cookie=cookie)
    assert third.json()["id"] not in {first.json()["id"], second.json()["id"]}


def test_expired_session_is_replaced():
    context = SessionContext("s1", cookie={"max_age": 500})
    client = TestClient(_make_app(context), base_url="https://testserver")

    first = _get(client, "/whoami")
    cookie = _session_cookie(first)
    time.sleep(1.0)

    second = _get(client, "/whoami", cookie=cookie)
    assert second.json()["id"] != first.json()["id"]
    assert _length(context) == 1


def test_request_outside_cookie_path_is_untouched():
    store = RecordingStore()
    context = SessionContext("s1", store=store, cookie={"path": "/api"})
    client = TestClient(_make_app(context), base_url="https://testserver")

    response = _get(client, "/outside", cookie="s:whatever.sig")
    assert response.json() == {"id": None}
    assert "set-cookie" not in response.headers
    assert store.calls == []
    assert _length(context) == 0

    inside = _get(client, "/api/ping")
    assert inside.json()["id"] is not None
    assert "Path=/api" in inside.headers["set-cookie"]


def test_secure_cookie_not_emitted_over_plain_http():
    context = SessionContext("s1")
    client = TestClient(_make_app(context), base_url="http://testserver")

    response = _get(client, "/whoami")
    assert response.json()["id"] is not None
    assert "set-cookie" not in response.headers
    assert _length(context) == 1


def test_forwarded_proto_marks_connection_secure():
    context = SessionContext("s1")
    client = TestClient(_make_app(context), base_url="http://testserver")

    response = _get(client, "/whoami", headers={"x-forwarded-proto": "HTTPS, http"})
    assert _session_cookie(response) is not None


def test_forwarded_proto_ignored_without_proxy_trust():
    context = SessionContext("s1", proxy=False)
    client = TestClient(_make_app(context), base_url="http://testserver")

    response = _get(client, "/whoami", headers={"x-forwarded-proto": "https"})
    assert "set-cookie" not in response.headers


def test_insecure_cookie_emitted_over_plain_http():
    context = SessionContext("s1", cookie={"secure": False})
    client = TestClient(_make_app(context), base_url="http://testserver")

    response = _get(client, "/whoami")
    assert _session_cookie(response) is not None
    assert "Secure" not in response.headers["set-cookie"]


def test_pre_bound_session_skips_resolution_but_is_finalised():
    issued: list[str] = []
    store = RecordingStore()
    context = SessionContext("s1", store=store, cookie={"path": "/api"})
    outer = [Middleware(GenerateFirst, context=context, issued=issued)]
    client = TestClient(_make_app(context, outer=outer), base_url="https://testserver")

    response = _get(client, "/outside", cookie="s:ignored.sig")
    assert response.json()["id"] == issued[0]
    assert unsign_cookie(_session_cookie(response), "s1") == issued[0]
    assert store.calls == [("set", issued[0])]


def test_session_cookie_survives_downstream_cookies():
    context = SessionContext("s1")
    client = TestClient(_make_app(context), base_url="https://testserver")

    response = _get(client, "/conflicting-cookies")
    cookies = response.headers.get_list("set-cookie")
    assert len(cookies) == 2
    assert cookies[0].startswith("theme=dark")
    assert cookies[-1].startswith(f"{NAME}=")
    assert unsign_cookie(_session_cookie(response), "s1") == response.json()["id"]


def test_destroyed_session_is_not_persisted():
    context = SessionContext("s1")
    client = TestClient(_make_app(context), base_url="https://testserver")

    first = _get(client, "/whoami")
    client.cookies.clear()
    response = client.post("/logout", headers={"cookie": f"{NAME}={_session_cookie(first)}"})
    assert response.json() == {"id": None}
    assert "set-cookie" not in response.headers
    assert _length(context) == 0


def test_disconnected_store_bypasses_sessions():
    store = RecordingStore()
    context = SessionContext("s1", store=store)
    client = TestClient(_make_app(context), base_url="https://testserver")

    store.emit(StoreEvent.DISCONNECT)
    response = _get(client, "/whoami")
    assert response.status_code == 200
    assert response.json() == {"id": None}
    assert "set-cookie" not in response.headers
    assert store.calls == []

    store.emit(StoreEvent.WORK)
    assert _session_cookie(_get(client, "/whoami")) is not None


def test_merge_order_is_downstream_first_then_session_cookie():
    downstream = [
        (b"content-type", b"text/plain"),
        (b"set-cookie", b"connect.sid=stale; Path=/"),
        (b"set-cookie", b"theme=dark; Path=/"),
    ]
    merged = merge_headers(downstream, NAME, "connect.sid=s:fresh.sig; Path=/")
    assert merged == [
        (b"content-type", b"text/plain"),
        (b"set-cookie", b"theme=dark; Path=/"),
        (b"set-cookie", b"connect.sid=s:fresh.sig; Path=/"),
    ]


async def _wait_for_pending(context: SessionContext, count: int) -> None:
    for _ in range(200):
        if context.connectivity.pending == count:
            return
        await asyncio.sleep(0.005)
    raise AssertionError(f"expected {count} waiters, found {context.connectivity.pending}")


@pytest.mark.asyncio
async def test_blocked_requests_resume_on_work():
    context = SessionContext("s1")
    transport = httpx.ASGITransport(app=_make_app(context))
    context.store.emit(StoreEvent.BLOCK)

    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as client:
        requests = [asyncio.create_task(client.get("/whoami")) for _ in range(3)]
        await _wait_for_pending(context, 3)
        assert not any(request.done() for request in requests)

        context.store.emit(StoreEvent.WORK)
        responses = await asyncio.wait_for(asyncio.gather(*requests), timeout=5)

    ids = {response.json()["id"] for response in responses}
    assert None not in ids
    assert len(ids) == 3
    assert all(_session_cookie(response) for response in responses)
    assert await context.store.length() == 3


@pytest.mark.asyncio
async def test_blocked_requests_skip_sessions_on_disconnect():
    context = SessionContext("s1")
    transport = httpx.ASGITransport(app=_make_app(context))
    context.store.emit(StoreEvent.BLOCK)

    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as client:
        requests = [asyncio.create_task(client.get("/whoami")) for _ in range(3)]
        await _wait_for_pending(context, 3)

        context.store.emit(StoreEvent.DISCONNECT)
        responses = await asyncio.wait_for(asyncio.gather(*requests), timeout=5)

    assert [response.status_code for response in responses] == [200, 200, 200]
    assert all(response.json() == {"id": None} for response in responses)
    assert not any("set-cookie" in response.headers for response in responses)
    assert await context.store.length() == 0


async def _receive():
    return {"type": "http.request", "body": b"", "more_body": False}


@pytest.mark.asyncio
async def test_slot_is_cleared_when_request_ends():
    context = SessionContext("s1")
    seen: list[Optional[str]] = []
    sent: list[dict] = []

    async def downstream(scope, receive, send):
        seen.append(context.id)
        await send({"type": "http.response.start", "status": 204, "headers": []})
        await send({"type": "http.response.body", "body": b""})

    async def send(message):
        sent.append(message)

    provider = SessionProvider(downstream, context=context)
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "https",
        "path": "/",
        "root_path": "",
        "query_string": b"",
        "headers": [],
        "server": ("testserver", 443),
    }

    await provider(scope, _receive, send)
    assert seen[0] is not None
    assert context.session is None

    bound = context.generate()
    await provider(scope, _receive, send)
    assert seen[1] == bound.id
    assert context.session is None
    assert any(key == b"set-cookie" for key, _ in sent[-2]["headers"])


@pytest.mark.asyncio
async def test_non_http_scopes_pass_through():
    context = SessionContext("s1")
    calls: list[str] = []

    async def downstream(scope, receive, send):
        calls.append(scope["type"])

    async def send(message):
        return None

    context.store.emit(StoreEvent.BLOCK)
    await SessionProvider(downstream, context=context)({"type": "lifespan"}, _receive, send)
    assert calls == ["lifespan"]
    assert context.connectivity.pending == 0


@pytest.mark.asyncio
async def test_session_bound_outside_a_request_is_not_shared():
    context = SessionContext("s1")
    transport = httpx.ASGITransport(app=_make_app(context))
    early = context.generate()

    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as client:
        first = await client.get("/whoami")
        client.cookies.clear()
        overlapping = await asyncio.gather(client.get("/slow"), client.get("/slow"))

    assert first.json()["id"] == early.id
    ids = [response.json()["id"] for response in overlapping]
    assert None not in ids
    assert ids[0] != ids[1]
    assert early.id not in ids
    assert context.session is None


@pytest.mark.asyncio
async def test_pre_bound_session_goes_to_exactly_one_request():
    context = SessionContext("s1")
    transport = httpx.ASGITransport(app=_make_app(context))
    early = context.generate()

    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as client:
        responses = await asyncio.gather(*(client.get("/slow") for _ in range(3)))

    ids = [response.json()["id"] for response in responses]
    assert ids.count(early.id) == 1
    assert len(set(ids)) == 3

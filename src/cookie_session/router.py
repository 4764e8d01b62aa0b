from __future__ import annotations

from fastapi import APIRouter, Depends

from .context import SessionContext
from .dependencies import get_session_context, require_session
from .schemas import CookieInfo, DeleteResponse, SessionInfo, SessionStatsResponse
from .session import Session

router = APIRouter(prefix="/api/session", tags=["session"])


@router.get("", response_model=SessionInfo)
async def get_session(session: Session = Depends(require_session)) -> SessionInfo:
    return _to_info(session)


@router.post("/touch", response_model=SessionInfo)
async def touch_session(session: Session = Depends(require_session)) -> SessionInfo:
    return _to_info(session.touch())


@router.post("/regenerate", response_model=SessionInfo)
async def regenerate_session(
    _: Session = Depends(require_session),
    context: SessionContext = Depends(get_session_context),
) -> SessionInfo:
    return _to_info(await context.regenerate())


@router.delete("", response_model=DeleteResponse)
async def delete_session(
    _: Session = Depends(require_session),
    context: SessionContext = Depends(get_session_context),
) -> DeleteResponse:
    await context.destroy()
    return DeleteResponse(success=True)


@router.get("/stats", response_model=SessionStatsResponse)
async def session_stats(context: SessionContext = Depends(get_session_context)) -> SessionStatsResponse:
    return SessionStatsResponse(count=await context.store.length(), connectivity=context.connectivity.state)


def _to_info(session: Session) -> SessionInfo:
    cookie = session.cookie
    return SessionInfo(
        id=session.id,
        cookie=CookieInfo(
            path=cookie.path,
            domain=cookie.domain,
            expires=cookie.expires,
            max_age=cookie.max_age,
            original_max_age=cookie.original_max_age,
            secure=cookie.secure,
            http_only=cookie.http_only,
            same_site=cookie.same_site.value if cookie.same_site else None,
        ),
    )

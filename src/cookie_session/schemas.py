from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .connectivity import ConnectivityState


class CookieInfo(BaseModel):
    path: str
    domain: Optional[str] = None
    expires: Optional[datetime] = None
    max_age: Optional[int] = Field(default=None, description="Milliseconds until the cookie expires.")
    original_max_age: Optional[int] = None
    secure: bool
    http_only: bool
    same_site: Optional[str] = None


class SessionInfo(BaseModel):
    id: str
    cookie: CookieInfo


class SessionStatsResponse(BaseModel):
    count: int
    connectivity: ConnectivityState


class DeleteResponse(BaseModel):
    success: bool

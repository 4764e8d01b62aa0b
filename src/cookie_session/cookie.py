"""Session cookie attributes and their Set-Cookie rendering.

Durations are expressed in milliseconds. ``expires`` is always held as an
aware UTC ``datetime``; ``max_age`` is derived from it on read, so assigning
either one keeps the other consistent. ``original_max_age`` is the baseline
that :meth:`cookie_session.session.Session.touch` reapplies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, field_validator
from starlette.responses import Response

logger = logging.getLogger(__name__)

DEFAULT_PATH = "/"


class SameSite(str, Enum):
    NONE = "None"
    STRICT = "Strict"
    LAX = "Lax"


def coerce_same_site(value: Any) -> Optional[SameSite]:
    """Map ``value`` onto :class:`SameSite`; anything unrecognised is left unset."""
    if value is None or isinstance(value, SameSite):
        return value
    if isinstance(value, str):
        for member in SameSite:
            if member.value.lower() == value.lower():
                return member
    logger.warning("Ignoring unsupported SameSite value %r", value)
    return None


def is_valid_date(value: Any) -> bool:
    return isinstance(value, datetime)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(value))


class CookieOptions(BaseModel):
    domain: Optional[str] = None
    path: str = DEFAULT_PATH
    http_only: bool = True
    secure: bool = True
    same_site: Optional[SameSite] = None
    max_age: Optional[int] = Field(default=None, ge=0, description="Cookie lifetime in milliseconds.")
    expires: Optional[datetime] = None

    @field_validator("same_site", mode="before")
    @classmethod
    def drop_unknown_same_site(cls, value: Any) -> Optional[SameSite]:
        return coerce_same_site(value)


class Cookie:
    """Mutable attributes of one session cookie."""

    def __init__(
        self,
        *,
        domain: Optional[str] = None,
        path: str = DEFAULT_PATH,
        http_only: bool = True,
        secure: bool = True,
        same_site: Any = None,
        max_age: Optional[int] = None,
        expires: Optional[datetime] = None,
        original_max_age: Optional[int] = None,
    ) -> None:
        self.domain = domain
        self.path = path if isinstance(path, str) else DEFAULT_PATH
        self.http_only = http_only if isinstance(http_only, bool) else True
        self.secure = secure if isinstance(secure, bool) else True
        self.same_site = coerce_same_site(same_site)
        self.original_max_age = original_max_age if original_max_age is not None else max_age

        # max_age takes precedence over an explicit expires.
        if max_age:
            self._expires: Optional[datetime] = _utcnow() + timedelta(milliseconds=max_age)
        elif is_valid_date(expires):
            self._expires = _as_utc(expires)
        else:
            self._expires = None

    @classmethod
    def from_options(cls, options: Optional[CookieOptions] = None) -> "Cookie":
        options = options or CookieOptions()
        return cls(
            domain=options.domain,
            path=options.path,
            http_only=options.http_only,
            secure=options.secure,
            same_site=options.same_site,
            max_age=options.max_age,
            expires=options.expires,
        )

    @classmethod
    def from_data(cls, data: Mapping[str, Any]) -> "Cookie":
        """Rebuild a cookie from its :attr:`data` view, keeping ``original_max_age``."""
        expires = data.get("expires")
        if isinstance(expires, str):
            expires = parse_timestamp(expires)
        return cls(
            domain=data.get("domain"),
            path=data.get("path", DEFAULT_PATH),
            http_only=data.get("http_only", True),
            secure=data.get("secure", True),
            same_site=data.get("same_site"),
            expires=expires,
            original_max_age=data.get("original_max_age"),
        )

    @property
    def expires(self) -> Optional[datetime]:
        return self._expires

    @expires.setter
    def expires(self, value: datetime) -> None:
        if not is_valid_date(value):
            logger.warning("Invalid date %r set to `expires`; keeping %s", value, self._expires)
            return
        self._expires = _as_utc(value)

    @property
    def max_age(self) -> Optional[int]:
        """Milliseconds left until ``expires``, or ``None`` for a browser-session cookie."""
        if self._expires is None:
            return None
        return round((self._expires - _utcnow()).total_seconds() * 1000)

    @max_age.setter
    def max_age(self, value: Optional[int]) -> None:
        if value is None:
            self._expires = None
        else:
            self._expires = _utcnow() + timedelta(milliseconds=value)

    @property
    def data(self) -> dict[str, Any]:
        return {
            "expires": self._expires.isoformat() if self._expires else None,
            "original_max_age": self.original_max_age,
            "secure": self.secure,
            "http_only": self.http_only,
            "domain": self.domain,
            "path": self.path,
            "same_site": self.same_site.value if self.same_site else None,
        }

    def __repr__(self) -> str:
        return f"Cookie({self.data!r})"


def render_set_cookie(name: str, value: str, cookie: Cookie) -> str:
    """Render the Set-Cookie header value for ``cookie``; Max-Age is folded into Expires."""
    response = Response()
    response.set_cookie(
        name,
        value,
        expires=cookie.expires,
        path=cookie.path,
        domain=cookie.domain,
        secure=cookie.secure,
        httponly=cookie.http_only,
        samesite=cookie.same_site.value.lower() if cookie.same_site else None,
    )
    return response.headers["set-cookie"]

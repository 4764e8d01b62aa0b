from __future__ import annotations

import os
from typing import Optional, Union

from pydantic import BaseModel, Field

from .cookie import CookieOptions

DEFAULT_COOKIE_NAME = "connect.sid"

_TRUTHY = {"1", "true", "yes", "y", "on"}


def get_str_env(name: str, default: str = "") -> str:
    value = os.getenv(name)
    return default if value is None else value.strip()


def get_bool_env(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def get_int_env(name: str, default: Optional[int] = None) -> Optional[int]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


class SessionOptions(BaseModel):
    """Options accepted by :class:`~cookie_session.context.SessionContext`."""

    secret: Union[str, list[str]] = Field(description="Secret, or rotation list of secrets, used to sign ids.")
    name: str = Field(default=DEFAULT_COOKIE_NAME, description="Name of the session cookie.")
    proxy: bool = Field(default=True, description="Trust the x-forwarded-proto header.")
    cookie: CookieOptions = Field(default_factory=CookieOptions)


def load_session_options() -> SessionOptions:
    """Build session options from ``SESSION_*`` environment variables."""
    secrets = [part.strip() for part in get_str_env("SESSION_SECRET").split(",") if part.strip()]
    cookie = CookieOptions(
        domain=get_str_env("SESSION_COOKIE_DOMAIN") or None,
        path=get_str_env("SESSION_COOKIE_PATH", "/") or "/",
        secure=get_bool_env("SESSION_COOKIE_SECURE", True),
        same_site=get_str_env("SESSION_COOKIE_SAMESITE") or None,
        max_age=get_int_env("SESSION_MAX_AGE_MS"),
    )
    return SessionOptions(
        secret=secrets[0] if len(secrets) == 1 else secrets,
        name=get_str_env("SESSION_COOKIE_NAME", DEFAULT_COOKIE_NAME) or DEFAULT_COOKIE_NAME,
        proxy=get_bool_env("SESSION_TRUST_PROXY", True),
        cookie=cookie,
    )

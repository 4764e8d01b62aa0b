"""HMAC signing of session identifiers."""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional, Sequence, Union

Secret = Union[str, Sequence[str]]

COOKIE_PREFIX = "s:"


def _secrets(secret: Secret) -> list[str]:
    if isinstance(secret, str):
        return [secret]
    return list(secret)


def _signature(value: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), value.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode().rstrip("=")


def sign(value: str, secret: Secret) -> str:
    """Append ``.<signature>`` to ``value``, signed with the first secret."""
    return f"{value}.{_signature(value, _secrets(secret)[0])}"


def unsign(signed: str, secret: Secret) -> Optional[str]:
    """Return the original value if ``signed`` verifies against any secret, else ``None``."""
    if not isinstance(signed, str) or "." not in signed:
        return None
    value = signed[: signed.rindex(".")]
    for candidate in _secrets(secret):
        expected = f"{value}.{_signature(value, candidate)}"
        if hmac.compare_digest(expected.encode(), signed.encode()):
            return value
    return None


def sign_cookie(value: str, secret: Secret) -> str:
    return COOKIE_PREFIX + sign(value, secret)


def unsign_cookie(value: str, secret: Secret) -> Optional[str]:
    # An unprefixed value is rejected outright rather than read as unsigned.
    if not isinstance(value, str) or not value.startswith(COOKIE_PREFIX):
        return None
    return unsign(value[len(COOKIE_PREFIX) :], secret)

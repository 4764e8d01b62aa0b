from __future__ import annotations


class SessionError(Exception):
    """Base class for errors raised by the session layer."""


class ConfigurationError(SessionError, ValueError):
    """Raised when a session context is constructed with invalid options."""


class CorruptRecordError(SessionError, ValueError):
    """Raised when a persisted session record cannot be decoded."""

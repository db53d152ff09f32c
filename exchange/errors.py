"""
Ingester exception hierarchy.
Everything raised on purpose derives from IngestError so the entry point can
tell expected failures apart from bugs.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base class for ingester errors."""


class AuthError(IngestError):
    """Refresh token missing or the OAuth endpoint refused to issue a JWT."""


class ConfigError(IngestError):
    """Invalid configuration value (bucket width, start date, sessions...)."""


class HttpError(IngestError):
    """Non-2xx REST response. Fatal to the running fetch."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class TruncatedWindowError(HttpError):
    """Server total came within one of the page limit, the window may be incomplete."""


class StreamTransportError(IngestError):
    """Socket-level failure. Recovered by reconnecting."""


class PersistenceError(IngestError):
    """Appending a flushed buffer to disk failed."""


class FlushInProgressError(IngestError, RuntimeError):
    """A buffer swap targeted a slot whose flush has not finished."""


__all__ = [
    "IngestError",
    "AuthError",
    "ConfigError",
    "HttpError",
    "TruncatedWindowError",
    "StreamTransportError",
    "PersistenceError",
    "FlushInProgressError",
]

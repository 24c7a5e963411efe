"""Exceptions raised inside the desktop OAuth client.

Callers of the public operations never see these: they are mapped to a
:class:`~desktop_oauth.models.Status` before the callback fires.
"""

from __future__ import annotations


class OAuthError(Exception):
    """OAuth-related error."""

    def __init__(self, message: str, error_code: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class LoopbackBindError(OAuthError):
    """The loopback listener could not be started."""

    def __init__(self, host: str, port: int, reason: str):
        super().__init__(
            f"Unable to listen on {host}:{port}: {reason}",
            error_code="loopback_unavailable",
            details={"host": host, "port": port},
        )
        self.host = host
        self.port = port

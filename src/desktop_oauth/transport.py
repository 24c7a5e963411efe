"""Outbound HTTP boundary.

The rest of the package only needs "send a request, get status, content
type and body back, or learn that the request never completed". This
module provides that on top of httpx.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class TransportResponse:
    """Raw result of an outbound request."""

    succeeded: bool
    status_code: int = 0
    content_type: str = ""
    body: bytes = b""

    @classmethod
    def connection_failed(cls) -> "TransportResponse":
        return cls(succeeded=False)


class Transport(Protocol):
    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
    ) -> TransportResponse: ...


class HttpTransport:
    """httpx-backed transport.

    A fresh ``httpx.AsyncClient`` is used per request, so requests share no
    state and may run concurrently.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
    ) -> TransportResponse:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, headers=headers, data=data)
        except httpx.TransportError as e:
            logger.warning("%s %s failed: %s", method, _redact(url), e)
            return TransportResponse.connection_failed()

        return TransportResponse(
            succeeded=True,
            status_code=response.status_code,
            content_type=response.headers.get("content-type", ""),
            body=response.content,
        )


def _redact(url: str) -> str:
    """Drop the query string, which may carry a token."""
    return url.split("?", 1)[0]

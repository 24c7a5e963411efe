"""Access token validation through the identity (userinfo) endpoint."""

from __future__ import annotations

import logging
from urllib.parse import quote

from .classifier import classify
from .models import Status
from .transport import Transport

logger = logging.getLogger(__name__)


class AccessTokenValidator:
    """Checks a token by sending a "ping" request authenticated with it.

    Any 2xx JSON answer means the token is fine; the body is not inspected.
    """

    def __init__(self, transport: Transport, userinfo_url: str):
        self.transport = transport
        self.userinfo_url = userinfo_url

    async def validate(self, access_token: str) -> Status:
        response = await self.transport.send("GET", self.userinfo_url + quote(access_token, safe=""))
        outcome = classify(
            response.succeeded,
            response.status_code,
            response.content_type,
            response.body,
        )
        if outcome.is_success:
            logger.info("The access token has been checked and the token is fine")
            return Status.SUCCESS

        # Failures are passed through as classified; the validator itself never
        # produces INVALID_GRANT, but a provider `invalid_grant` body still maps to it
        logger.info("Access token check failed")
        return outcome.status

"""Token endpoint requests: refresh-token grant and authorization-code exchange.

Both requests are form-encoded POSTs to the same endpoint. The endpoint's
answer is classified by :func:`desktop_oauth.classifier.classify`; a
successful answer is then checked for the fields the grant must return.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from .classifier import classify
from .models import ClientCredentials, JsonDocument, Status, TokenResult, TokenSet
from .transport import FORM_CONTENT_TYPE, Transport

logger = logging.getLogger(__name__)

REFRESH_TOKEN_GRANT = "refresh_token"
AUTHORIZATION_CODE_GRANT = "authorization_code"


class TokenEndpointClient:
    """Issues token endpoint requests.

    Holds no per-request state: credentials, codes and tokens are passed
    to each call, so calls may run concurrently.
    """

    def __init__(
        self,
        transport: Transport,
        token_url: str,
        clock: Callable[[], float] = time.time,
    ):
        self.transport = transport
        self.token_url = token_url
        self._clock = clock

    async def refresh(self, credentials: ClientCredentials, refresh_token: str) -> TokenResult:
        """Exchange a refresh token for a new access token.

        Returns:
            TokenResult whose tokens carry no refresh token
        """
        requested_at, document, status = await self._post(
            {
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "refresh_token": refresh_token,
                "grant_type": REFRESH_TOKEN_GRANT,
            }
        )
        if document is None:
            logger.info("The access token failed to refresh")
            return TokenResult.failed(status)

        access_token = document.try_get_string("access_token")
        expires_in = document.try_get_int("expires_in")
        if access_token is None or expires_in is None or expires_in < 0:
            logger.error(
                "Unable to extract from the response one of the following fields: "
                "`access_token`, `expires_in`, aborting"
            )
            return TokenResult.failed(Status.INVALID_RESPONSE_FORMAT)

        logger.info("The access token has been successfully refreshed")
        return TokenResult(
            status=Status.SUCCESS,
            tokens=TokenSet(access_token=access_token, expires_on=requested_at + expires_in),
        )

    async def exchange_code(
        self,
        credentials: ClientCredentials,
        code: str,
        redirect_uri: str,
    ) -> TokenResult:
        """Redeem an authorization code for access and refresh tokens.

        ``redirect_uri`` must be the one the authorization request used.
        """
        requested_at, document, status = await self._post(
            {
                "code": code,
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": AUTHORIZATION_CODE_GRANT,
            }
        )
        if document is None:
            logger.info("The code exchange failed")
            return TokenResult.failed(status)

        access_token = document.try_get_string("access_token")
        refresh_token = document.try_get_string("refresh_token")
        expires_in = document.try_get_int("expires_in")
        if access_token is None or refresh_token is None or expires_in is None or expires_in < 0:
            logger.error(
                "Unable to extract from the response one of the following fields: "
                "`access_token`, `refresh_token`, `expires_in`, aborting"
            )
            return TokenResult.failed(Status.INVALID_RESPONSE_FORMAT)

        logger.info("The code exchange was successfully completed")
        return TokenResult(
            status=Status.SUCCESS,
            tokens=TokenSet(
                access_token=access_token,
                expires_on=requested_at + expires_in,
                refresh_token=refresh_token,
            ),
        )

    async def _post(self, params: dict[str, str]) -> tuple[int, JsonDocument | None, Status]:
        # Expiry is relative to when the request was sent, not when it returned
        requested_at = int(self._clock())
        response = await self.transport.send(
            "POST",
            self.token_url,
            headers={"Content-Type": FORM_CONTENT_TYPE},
            data=params,
        )
        outcome = classify(
            response.succeeded,
            response.status_code,
            response.content_type,
            response.body,
        )
        return requested_at, outcome.document, outcome.status

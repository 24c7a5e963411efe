"""Interactive authorization-code flow through a loopback redirect.

One :class:`ManualAuthorizationFlow` instance drives one authorization:

    IDLE -> AUTHORIZATION_LAUNCHED -> AWAITING_REDIRECT
        -> CODE_RECEIVED -> EXCHANGING -> DONE
        -> ERROR_RECEIVED -> DONE

More on the loopback method:
https://developers.google.com/identity/protocols/oauth2/native-app
"""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from enum import Enum
from typing import Callable
from urllib.parse import urlencode

from .callbacks import deliver
from .config import DesktopOAuthSettings, settings as default_settings
from .errors import LoopbackBindError
from .models import (
    AuthorizationQuery,
    ClientCredentials,
    ManualAuthenticationCallback,
    Status,
    TokenResult,
)
from .server import LoopbackCallbackServer, RouteToken, failure_page, success_page
from .tokens import TokenEndpointClient

logger = logging.getLogger(__name__)


class FlowState(Enum):
    IDLE = "idle"
    AUTHORIZATION_LAUNCHED = "authorization_launched"
    AWAITING_REDIRECT = "awaiting_redirect"
    CODE_RECEIVED = "code_received"
    EXCHANGING = "exchanging"
    ERROR_RECEIVED = "error_received"
    DONE = "done"


def build_authorization_url(base_url: str, scopes: str, redirect_uri: str, client_id: str) -> str:
    """Build the URL the user opens to grant access."""
    params = {
        "scope": scopes,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "client_id": client_id,
    }
    return f"{base_url}?{urlencode(params)}"


class ManualAuthorizationFlow:
    """Drives one interactive authorization from browser launch to tokens.

    The callback is invoked at most once. If another flow binds the
    loopback route before this one receives its redirect, this flow stays
    in ``AWAITING_REDIRECT`` and its callback never fires.
    """

    def __init__(
        self,
        *,
        server: LoopbackCallbackServer,
        token_client: TokenEndpointClient,
        credentials: ClientCredentials,
        scopes: str,
        port: int,
        callback: ManualAuthenticationCallback,
        open_url: Callable[[str], object] = webbrowser.open,
        settings: DesktopOAuthSettings | None = None,
    ):
        self.settings = settings or default_settings
        self.credentials = credentials
        self.scopes = scopes
        self.port = port
        self.redirect_uri = self.settings.loopback_redirect_uri(port)
        self.authorization_url = build_authorization_url(
            self.settings.authorization_url,
            scopes,
            self.redirect_uri,
            credentials.client_id,
        )
        self.result: TokenResult | None = None

        self._server = server
        self._token_client = token_client
        self._callback = callback
        self._open_url = open_url
        self._state = FlowState.IDLE
        self._route: RouteToken | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._exchange_task: asyncio.Task | None = None
        self._finished: asyncio.Event | None = None

    @property
    def state(self) -> FlowState:
        return self._state

    def start(self) -> None:
        """Open the browser and bind the loopback route.

        Must be called from a running event loop. Returns immediately.
        """
        if self._state is not FlowState.IDLE:
            raise RuntimeError(f"Flow already started (state: {self._state.value})")
        self._loop = asyncio.get_running_loop()
        self._finished = asyncio.Event()

        self._launch_authorization()

        try:
            self._route = self._server.bind(self.port, self.settings.loopback_path, self._on_redirect)
        except LoopbackBindError as e:
            logger.error("Unable to perform manual authentication: %s", e)
            self._finish(TokenResult.failed(Status.UNKNOWN_ERROR))
            return

        self._transition(FlowState.AWAITING_REDIRECT)

    async def wait(self) -> TokenResult:
        """Wait until the flow is done. Never returns for a superseded flow."""
        if self._finished is None:
            raise RuntimeError("Flow not started")
        await self._finished.wait()
        return self.result

    def _launch_authorization(self) -> None:
        # The user can still open the link by hand, so a failure here is not fatal
        try:
            opened = self._open_url(self.authorization_url)
        except Exception:
            logger.warning("Unable to open the browser", exc_info=True)
            opened = False
        if opened is False:
            logger.warning("Open this URL to authorize: %s", self.authorization_url)
        self._transition(FlowState.AUTHORIZATION_LAUNCHED)

    def _on_redirect(self, query: AuthorizationQuery) -> str:
        # Runs on the listener thread
        self._loop.call_soon_threadsafe(self._receive, query)
        if query.success:
            return success_page(self.settings.app_name)
        return failure_page(self.settings.app_name)

    def _receive(self, query: AuthorizationQuery) -> None:
        if self._state is not FlowState.AWAITING_REDIRECT:
            logger.debug("Ignoring redirect in state %s", self._state.value)
            return

        if query.success:
            self._transition(FlowState.CODE_RECEIVED)
            self._exchange_task = self._loop.create_task(self._exchange(query.code))
            return

        self._transition(FlowState.ERROR_RECEIVED)
        logger.error("Unable to authenticate: `%s` %s", query.error, query.error_description or "")
        self._finish(TokenResult.failed(Status.INVALID_GRANT))

    async def _exchange(self, code: str) -> None:
        self._transition(FlowState.EXCHANGING)
        try:
            result = await self._token_client.exchange_code(self.credentials, code, self.redirect_uri)
        except Exception:
            logger.exception("The code exchange failed unexpectedly")
            result = TokenResult.failed(Status.UNKNOWN_ERROR)
        self._finish(result)

    def _finish(self, result: TokenResult) -> None:
        if self._state is FlowState.DONE:
            return
        if self._route is not None:
            self._server.unbind(self._route)
            self._route = None
        self._transition(FlowState.DONE)
        self.result = result
        deliver(self._callback, result)
        self._finished.set()

    def _transition(self, state: FlowState) -> None:
        logger.debug("Manual authorization: %s -> %s", self._state.value, state.value)
        self._state = state

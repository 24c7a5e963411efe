"""Desktop OAuth client facade.

Exposes the three public operations of the package:

1. Refresh an access token with a refresh token
2. Authenticate manually (browser + loopback redirect + code exchange)
3. Check that an access token is still accepted
"""

from __future__ import annotations

import asyncio
import logging
import time
import webbrowser
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from .callbacks import deliver
from .config import DesktopOAuthSettings, settings as default_settings
from .flow import ManualAuthorizationFlow
from .models import (
    AccessTokenCheckCallback,
    AuthenticationMethod,
    ClientCredentials,
    ManualAuthenticationCallback,
    RefreshCallback,
    Status,
    TokenResult,
)
from .server import LoopbackCallbackServer
from .tokens import TokenEndpointClient
from .transport import HttpTransport, Transport
from .validator import AccessTokenValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OAuthDesktopClient:
    """OAuth 2.0 client for installed (desktop) applications.

    Not thread-safe: use it from a single event loop.

    Usage:
        client = OAuthDesktopClient()
        credentials = ClientCredentials("client_id", "client_secret")

        def on_tokens(result: TokenResult):
            if result.ok:
                save(result.access_token, result.refresh_token, result.expires_on)

        # Opens the browser and waits for the redirect on port 8080
        client.authenticate_manually(
            on_tokens,
            AuthenticationMethod.LOOPBACK_IP,
            "openid email",
            credentials,
            8080,
        )

        # Later
        client.refresh_auth_token(on_tokens, credentials, refresh_token)
        client.check_access_token(lambda status: ..., access_token)

    All three operations return immediately and must be called while an
    event loop is running. Their callbacks fire exactly once, except for a
    manual authorization superseded by a newer one, whose callback never
    fires.
    """

    def __init__(
        self,
        settings: DesktopOAuthSettings | None = None,
        transport: Transport | None = None,
        server: LoopbackCallbackServer | None = None,
        open_url: Callable[[str], Any] = webbrowser.open,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or default_settings
        self.transport = transport or HttpTransport(timeout=self.settings.request_timeout)
        self.server = server or LoopbackCallbackServer(host=self.settings.loopback_host)
        self.token_client = TokenEndpointClient(self.transport, self.settings.token_url, clock=clock)
        self.validator = AccessTokenValidator(self.transport, self.settings.userinfo_url)

        self._open_url = open_url
        self._tasks: set[asyncio.Task] = set()
        self._flow: ManualAuthorizationFlow | None = None

    @property
    def active_flow(self) -> ManualAuthorizationFlow | None:
        """The most recently started manual authorization."""
        return self._flow

    async def refresh(self, credentials: ClientCredentials, refresh_token: str) -> TokenResult:
        return await self.token_client.refresh(credentials, refresh_token)

    async def check(self, access_token: str) -> Status:
        return await self.validator.validate(access_token)

    def refresh_auth_token(
        self,
        callback: RefreshCallback,
        credentials: ClientCredentials,
        refresh_token: str,
    ) -> asyncio.Task:
        """Refresh the access token of a user.

        ``callback`` receives a TokenResult; on success its tokens carry
        the new access token and its absolute expiry, without a refresh
        token. On failure the status is one of UNSUPPORTED_CONTENT_TYPE,
        INVALID_RESPONSE_FORMAT, CONNECTION_ERROR, INVALID_GRANT (the
        refresh token is no longer usable, authenticate manually) or
        UNKNOWN_ERROR.
        """
        return self._spawn(
            self.token_client.refresh(credentials, refresh_token),
            callback,
            TokenResult.failed(Status.UNKNOWN_ERROR),
        )

    def authenticate_manually(
        self,
        callback: ManualAuthenticationCallback,
        method: AuthenticationMethod,
        scopes: str | Iterable[str],
        credentials: ClientCredentials,
        loopback_port: int,
    ) -> ManualAuthorizationFlow | None:
        """Run the interactive authorization in the system browser.

        Starting a new authorization while a previous one still waits for
        its redirect drops the previous one silently.

        Returns:
            The started flow, or None if ``method`` is unsupported (the
            callback then already received UNKNOWN_ERROR)
        """
        if method is not AuthenticationMethod.LOOPBACK_IP:
            logger.error("The specified method of manual authentication is unsupported: %s", method)
            deliver(callback, TokenResult.failed(Status.UNKNOWN_ERROR))
            return None

        if not isinstance(scopes, str):
            scopes = " ".join(scopes)

        flow = ManualAuthorizationFlow(
            server=self.server,
            token_client=self.token_client,
            credentials=credentials,
            scopes=scopes,
            port=loopback_port,
            callback=callback,
            open_url=self._open_url,
            settings=self.settings,
        )
        self._flow = flow
        flow.start()
        return flow

    def check_access_token(self, callback: AccessTokenCheckCallback, access_token: str) -> asyncio.Task:
        """Check whether ``access_token`` is still accepted by the provider."""
        return self._spawn(self.validator.validate(access_token), callback, Status.UNKNOWN_ERROR)

    def close(self) -> None:
        """Stop the loopback listener without blocking the event loop.

        Requests in flight still complete. The port is released shortly
        after; use :meth:`aclose` to wait for it.
        """
        self.server.close(wait=False)

    async def aclose(self) -> None:
        """Stop the loopback listener and wait until its port is released."""
        await asyncio.to_thread(self.server.close)

    def _spawn(self, operation: Awaitable[T], callback: Callable[[T], None], fallback: T) -> asyncio.Task:
        async def run() -> None:
            try:
                result = await operation
            except Exception:
                logger.exception("OAuth operation failed unexpectedly")
                result = fallback
            deliver(callback, result)

        task = asyncio.get_running_loop().create_task(run())
        # Keep a reference so the task is not garbage collected mid-flight
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

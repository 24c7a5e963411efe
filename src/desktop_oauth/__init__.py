"""Desktop OAuth 2.0 client for installed applications.

Obtains, refreshes and validates access tokens using the loopback IP
redirect method for native apps.

Usage:
    import asyncio
    from desktop_oauth import (
        AuthenticationMethod,
        ClientCredentials,
        OAuthDesktopClient,
    )

    async def main():
        credentials = ClientCredentials("client_id", "client_secret")
        done = asyncio.get_running_loop().create_future()

        async with OAuthDesktopClient() as client:
            # Opens the browser; the provider redirects to 127.0.0.1:8080
            client.authenticate_manually(
                done.set_result,
                AuthenticationMethod.LOOPBACK_IP,
                "openid email",
                credentials,
                8080,
            )
            result = await done

        if result.ok:
            print(result.access_token, result.refresh_token, result.expires_on)

    asyncio.run(main())
"""

from .client import OAuthDesktopClient
from .config import DesktopOAuthSettings
from .errors import LoopbackBindError, OAuthError
from .flow import FlowState, ManualAuthorizationFlow
from .models import (
    AuthenticationMethod,
    AuthorizationQuery,
    ClientCredentials,
    JsonDocument,
    RequestOutcome,
    Status,
    TokenResult,
    TokenSet,
)
from .server import LoopbackCallbackServer, RouteToken

__version__ = "0.1.0"

__all__ = [
    "OAuthDesktopClient",
    "DesktopOAuthSettings",
    "OAuthError",
    "LoopbackBindError",
    "ManualAuthorizationFlow",
    "FlowState",
    "AuthenticationMethod",
    "AuthorizationQuery",
    "ClientCredentials",
    "JsonDocument",
    "RequestOutcome",
    "Status",
    "TokenResult",
    "TokenSet",
    "LoopbackCallbackServer",
    "RouteToken",
]

"""desktop-oauth CLI - Main entry point."""

import asyncio
import json
import logging
from datetime import datetime

import typer
from rich.console import Console
from rich.panel import Panel

from .client import OAuthDesktopClient
from .config import settings
from .models import AuthenticationMethod, ClientCredentials, Status, TokenResult

app = typer.Typer(
    name="desktop-oauth",
    help="Desktop OAuth 2.0 client - sign in, refresh and validate access tokens",
    no_args_is_help=True,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _mask(token: str) -> str:
    if len(token) <= 12:
        return "*" * len(token)
    return f"{token[:8]}...{token[-4:]}"


def _credentials(client_id: str, client_secret: str) -> ClientCredentials:
    return ClientCredentials(client_id=client_id, client_secret=client_secret)


def _print_token_result(result: TokenResult, title: str, json_output: bool) -> None:
    if json_output:
        console.print_json(json.dumps({
            "status": result.status.name.lower(),
            "access_token": result.access_token,
            "refresh_token": result.refresh_token,
            "expires_on": result.expires_on,
        }))
        if not result.ok:
            raise typer.Exit(1)
        return

    if not result.ok:
        _print_failure(result.status, title)
        raise typer.Exit(1)

    expires = datetime.fromtimestamp(result.expires_on).isoformat(sep=" ", timespec="seconds")
    lines = [
        f"[bold green]{title} successful![/bold green]\n",
        f"Access Token: {_mask(result.access_token)}",
        f"Expires On: {expires}",
    ]
    if result.refresh_token:
        lines.append(f"Refresh Token: {_mask(result.refresh_token)}")
    lines.append("\n[dim]Use --json to print the full token values.[/dim]")
    console.print(Panel("\n".join(lines), title=title))


def _print_failure(status: Status, title: str) -> None:
    console.print(f"[red]{title} failed: {status.name.lower()}[/red]")
    if status is Status.INVALID_GRANT:
        console.print("[dim]Run 'desktop-oauth authenticate' to sign in again.[/dim]")
    elif status is Status.CONNECTION_ERROR:
        console.print("[dim]Check your network connection and try again.[/dim]")


async def _refresh(credentials: ClientCredentials, refresh_token: str) -> TokenResult:
    done = asyncio.get_running_loop().create_future()
    async with OAuthDesktopClient() as client:
        client.refresh_auth_token(done.set_result, credentials, refresh_token)
        return await done


async def _authenticate(credentials: ClientCredentials, scopes: str, port: int, timeout: float) -> TokenResult:
    done = asyncio.get_running_loop().create_future()
    async with OAuthDesktopClient() as client:
        client.authenticate_manually(
            done.set_result,
            AuthenticationMethod.LOOPBACK_IP,
            scopes,
            credentials,
            port,
        )
        return await asyncio.wait_for(done, timeout)


async def _validate(access_token: str) -> Status:
    done = asyncio.get_running_loop().create_future()
    async with OAuthDesktopClient() as client:
        client.check_access_token(done.set_result, access_token)
        return await done


@app.command()
def refresh(
    client_id: str = typer.Option(..., "--client-id", "-c", envvar="DESKTOP_OAUTH_CLIENT_ID", help="OAuth Client ID"),
    client_secret: str = typer.Option(
        ..., "--client-secret", "-s", envvar="DESKTOP_OAUTH_CLIENT_SECRET", help="OAuth Client Secret"
    ),
    refresh_token: str = typer.Option(..., "--refresh-token", "-r", help="Refresh token issued earlier"),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """Get a fresh access token using a refresh token."""
    result = asyncio.run(_refresh(_credentials(client_id, client_secret), refresh_token))
    _print_token_result(result, "Token refresh", json_output)


@app.command()
def authenticate(
    client_id: str = typer.Option(..., "--client-id", "-c", envvar="DESKTOP_OAUTH_CLIENT_ID", help="OAuth Client ID"),
    client_secret: str = typer.Option(
        ..., "--client-secret", "-s", envvar="DESKTOP_OAUTH_CLIENT_SECRET", help="OAuth Client Secret"
    ),
    scopes: str = typer.Option("openid email", "--scopes", help="Space-separated scopes"),
    port: int = typer.Option(8080, "--port", "-p", help="Local loopback port for the redirect"),
    timeout: int = typer.Option(300, "--timeout", "-t", help="Max seconds to wait"),
    json_output: bool = typer.Option(False, "--json", help="Print the result as JSON"),
):
    """Sign in through the system browser.

    Opens a browser window where you'll authorize the app. The provider
    redirects back to a temporary local server and the code is exchanged
    for tokens.
    """
    if not json_output:
        console.print(
            Panel(
                "[bold]Starting OAuth Authorization[/bold]\n\n"
                "A browser window will open for you to authorize the app.\n"
                "After authorization, you'll be redirected back.\n\n"
                f"Listening on: {settings.loopback_redirect_uri(port)}",
                title="OAuth Authenticate",
            )
        )

    try:
        result = asyncio.run(_authenticate(_credentials(client_id, client_secret), scopes, port, timeout))
    except TimeoutError:
        console.print("[red]Authorization timed out. Please try again.[/red]")
        raise typer.Exit(1)

    _print_token_result(result, "Authorization", json_output)


@app.command()
def validate(
    access_token: str = typer.Argument(..., help="Access token to check"),
):
    """Check whether an access token is still accepted."""
    status = asyncio.run(_validate(access_token))

    if status is not Status.SUCCESS:
        _print_failure(status, "Token check")
        raise typer.Exit(1)

    console.print(Panel("[bold green]Access token is valid[/bold green]", title="Token Check"))


@app.command()
def version():
    """Show version."""
    from . import __version__

    console.print(f"desktop-oauth v{__version__}")


if __name__ == "__main__":
    app()

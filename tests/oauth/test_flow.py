"""Tests for the interactive authorization flow."""

import asyncio
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest

from desktop_oauth.errors import LoopbackBindError
from desktop_oauth.flow import FlowState, ManualAuthorizationFlow, build_authorization_url
from desktop_oauth.models import AuthorizationQuery, Status, TokenResult, TokenSet
from desktop_oauth.server import RouteToken

PORT = 8765
REDIRECT_URI = f"http://127.0.0.1:{PORT}/google_oauth"


class FakeServer:
    """Stands in for LoopbackCallbackServer, keeping the bound handler."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.handler = None
        self.bound: list[RouteToken] = []
        self.unbound: list[RouteToken] = []

    def bind(self, port, path, handler):
        if self.fail:
            raise LoopbackBindError("127.0.0.1", port, "Address already in use")
        token = RouteToken(id=len(self.bound) + 1, port=port, path=path)
        self.bound.append(token)
        self.handler = handler
        return token

    def unbind(self, token):
        self.unbound.append(token)


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def token_client():
    client = MagicMock()
    client.exchange_code = AsyncMock(return_value=TokenResult(
        status=Status.SUCCESS,
        tokens=TokenSet(access_token="A", expires_on=123, refresh_token="R"),
    ))
    return client


@pytest.fixture
def make_flow(fake_server, token_client, credentials, test_settings):
    def _make(callback=None, open_url=None, server=None):
        return ManualAuthorizationFlow(
            server=server or fake_server,
            token_client=token_client,
            credentials=credentials,
            scopes="openid email",
            port=PORT,
            callback=callback or MagicMock(),
            open_url=open_url or MagicMock(return_value=True),
            settings=test_settings,
        )
    return _make


def test_build_authorization_url():
    """Should carry scope, response type, redirect URI and client id."""
    url = build_authorization_url("https://auth.test/auth", "openid email", REDIRECT_URI, "cid")

    parsed = urlparse(url)
    params = parse_qs(parsed.query)
    assert url.startswith("https://auth.test/auth?")
    assert params == {
        "scope": ["openid email"],
        "response_type": ["code"],
        "redirect_uri": [REDIRECT_URI],
        "client_id": ["cid"],
    }


class TestStart:
    @pytest.mark.asyncio
    async def test_start_opens_browser_and_binds(self, make_flow, fake_server):
        """Should open the authorization URL and bind the loopback route."""
        open_url = MagicMock(return_value=True)
        flow = make_flow(open_url=open_url)

        flow.start()

        assert flow.redirect_uri == REDIRECT_URI
        open_url.assert_called_once_with(flow.authorization_url)
        assert "redirect_uri=http%3A%2F%2F127.0.0.1%3A8765%2Fgoogle_oauth" in flow.authorization_url
        assert fake_server.bound[0].port == PORT
        assert fake_server.bound[0].path == "/google_oauth"
        assert flow.state is FlowState.AWAITING_REDIRECT

    @pytest.mark.asyncio
    async def test_browser_failure_is_not_fatal(self, make_flow):
        """Should keep waiting for the redirect when the browser cannot open."""
        flow = make_flow(open_url=MagicMock(side_effect=OSError("no browser")))

        flow.start()

        assert flow.state is FlowState.AWAITING_REDIRECT

    @pytest.mark.asyncio
    async def test_bind_failure_reports_unknown_error(self, make_flow, token_client):
        """Should finish with UNKNOWN_ERROR and empty tokens when binding fails."""
        callback = MagicMock()
        flow = make_flow(callback=callback, server=FakeServer(fail=True))

        flow.start()

        assert flow.state is FlowState.DONE
        callback.assert_called_once()
        result = callback.call_args.args[0]
        assert result.status is Status.UNKNOWN_ERROR
        assert result.access_token == ""
        assert result.refresh_token == ""
        assert result.expires_on == 0
        token_client.exchange_code.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, make_flow):
        flow = make_flow()
        flow.start()

        with pytest.raises(RuntimeError):
            flow.start()


class TestRedirect:
    @pytest.mark.asyncio
    async def test_code_is_exchanged(self, make_flow, fake_server, token_client, credentials):
        """Should exchange exactly once with the code and computed redirect URI."""
        callback = MagicMock()
        flow = make_flow(callback=callback)
        flow.start()

        page = fake_server.handler(AuthorizationQuery(code="abc"))
        result = await flow.wait()

        assert "Authentication succeed" in page
        assert "Test App" in page
        token_client.exchange_code.assert_awaited_once_with(credentials, "abc", REDIRECT_URI)
        callback.assert_called_once_with(result)
        assert result.ok
        assert (result.access_token, result.expires_on, result.refresh_token) == ("A", 123, "R")
        assert fake_server.unbound == fake_server.bound
        assert flow.state is FlowState.DONE

    @pytest.mark.asyncio
    async def test_exchange_failure_is_propagated(self, make_flow, fake_server, token_client):
        """Should hand the exchange failure to the callback."""
        token_client.exchange_code.return_value = TokenResult.failed(Status.INVALID_RESPONSE_FORMAT)
        callback = MagicMock()
        flow = make_flow(callback=callback)
        flow.start()

        fake_server.handler(AuthorizationQuery(code="abc"))
        result = await flow.wait()

        assert result.status is Status.INVALID_RESPONSE_FORMAT
        assert result.access_token == ""
        callback.assert_called_once()
        assert len(fake_server.unbound) == 1

    @pytest.mark.asyncio
    async def test_exchange_exception_is_unknown_error(self, make_flow, fake_server, token_client):
        """Should turn an exchange exception into UNKNOWN_ERROR."""
        token_client.exchange_code.side_effect = RuntimeError("boom")
        flow = make_flow()
        flow.start()

        fake_server.handler(AuthorizationQuery(code="abc"))
        result = await flow.wait()

        assert result.status is Status.UNKNOWN_ERROR

    @pytest.mark.asyncio
    async def test_error_redirect_skips_exchange(self, make_flow, fake_server, token_client):
        """Should report INVALID_GRANT without exchanging anything."""
        callback = MagicMock()
        flow = make_flow(callback=callback)
        flow.start()

        page = fake_server.handler(AuthorizationQuery(error="access_denied"))
        result = await flow.wait()

        assert "Authentication failed" in page
        token_client.exchange_code.assert_not_called()
        assert result.status is Status.INVALID_GRANT
        callback.assert_called_once_with(result)
        assert fake_server.unbound == fake_server.bound
        assert flow.state is FlowState.DONE

    @pytest.mark.asyncio
    async def test_passes_through_exchanging(self, make_flow, fake_server, token_client):
        """Should be EXCHANGING while the code exchange is in flight."""
        states = []
        release = asyncio.Event()

        async def slow_exchange(*args):
            states.append(flow.state)
            await release.wait()
            return TokenResult.failed(Status.CONNECTION_ERROR)

        token_client.exchange_code.side_effect = slow_exchange
        flow = make_flow()
        flow.start()

        fake_server.handler(AuthorizationQuery(code="abc"))
        await asyncio.sleep(0.01)
        assert states == [FlowState.EXCHANGING]

        release.set()
        result = await flow.wait()
        assert result.status is Status.CONNECTION_ERROR

    @pytest.mark.asyncio
    async def test_duplicate_redirect_is_ignored(self, make_flow, fake_server, token_client):
        """Should exchange and call back only once."""
        callback = MagicMock()
        flow = make_flow(callback=callback)
        flow.start()

        fake_server.handler(AuthorizationQuery(code="abc"))
        fake_server.handler(AuthorizationQuery(code="def"))
        await flow.wait()
        await asyncio.sleep(0)

        token_client.exchange_code.assert_awaited_once()
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_callback_error_does_not_break_flow(self, make_flow, fake_server):
        """Should finish even if the callback raises."""
        flow = make_flow(callback=MagicMock(side_effect=ValueError("caller bug")))
        flow.start()

        fake_server.handler(AuthorizationQuery(code="abc"))
        result = await flow.wait()

        assert result.ok
        assert flow.state is FlowState.DONE

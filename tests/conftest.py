"""Shared test fixtures for the desktop-oauth test suite."""

import json
import socket
from typing import Any
from unittest.mock import AsyncMock

import pytest

from desktop_oauth.config import DesktopOAuthSettings
from desktop_oauth.models import ClientCredentials
from desktop_oauth.transport import TransportResponse

SAMPLE_CLIENT_ID = "test_client_id"
SAMPLE_CLIENT_SECRET = "test_client_secret"
SAMPLE_TOKEN_URL = "https://oauth.test/token"
SAMPLE_AUTH_URL = "https://accounts.test/o/oauth2/v2/auth"
SAMPLE_USERINFO_URL = "https://openid.test/v1/userinfo?access_token="


# ============================================================================
# Mock Response Data
# ============================================================================

MOCK_REFRESH_RESPONSE = {
    "access_token": "refreshed_access_token",
    "expires_in": 3600,
    "scope": "openid email",
    "token_type": "Bearer",
}

MOCK_EXCHANGE_RESPONSE = {
    "access_token": "new_access_token",
    "refresh_token": "new_refresh_token",
    "expires_in": 3599,
    "scope": "openid email",
    "token_type": "Bearer",
}

MOCK_INVALID_GRANT = {
    "error": "invalid_grant",
    "error_description": "Token has been expired or revoked.",
}


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def credentials():
    return ClientCredentials(client_id=SAMPLE_CLIENT_ID, client_secret=SAMPLE_CLIENT_SECRET)


@pytest.fixture
def test_settings():
    return DesktopOAuthSettings(
        token_url=SAMPLE_TOKEN_URL,
        authorization_url=SAMPLE_AUTH_URL,
        userinfo_url=SAMPLE_USERINFO_URL,
        app_name="Test App",
    )


@pytest.fixture
def json_response():
    """Factory fixture to create transport responses with a JSON body."""
    def _create_response(data: Any, status_code: int = 200, content_type: str = "application/json; charset=utf-8"):
        return TransportResponse(
            succeeded=True,
            status_code=status_code,
            content_type=content_type,
            body=json.dumps(data).encode(),
        )
    return _create_response


@pytest.fixture
def mock_transport():
    """Transport whose ``send`` is an AsyncMock; set ``send.return_value``."""
    transport = AsyncMock()
    transport.send = AsyncMock(return_value=TransportResponse.connection_failed())
    return transport


@pytest.fixture
def free_port():
    """A local port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ============================================================================
# CLI Testing Fixtures
# ============================================================================

@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner."""
    from typer.testing import CliRunner
    return CliRunner()

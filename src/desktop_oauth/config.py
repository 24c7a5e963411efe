"""Desktop OAuth configuration via pydantic-settings."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class DesktopOAuthSettings(BaseSettings):
    token_url: str = "https://oauth2.googleapis.com/token"
    authorization_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    # The access token is appended to this URL as is
    userinfo_url: str = "https://openidconnect.googleapis.com/v1/userinfo?access_token="

    loopback_host: str = "127.0.0.1"
    loopback_path: str = "/google_oauth"

    request_timeout: float = 30.0

    # Shown on the page the browser lands on after the redirect
    app_name: str = "the application"

    model_config = {"env_prefix": "DESKTOP_OAUTH_", "env_file": ".env", "extra": "ignore"}

    def loopback_redirect_uri(self, port: int) -> str:
        return f"http://{self.loopback_host}:{port}{self.loopback_path}"


settings = DesktopOAuthSettings()

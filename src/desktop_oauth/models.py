"""Value types shared by the desktop OAuth components."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable


class Status(IntEnum):
    """Result status of an OAuth operation.

    Every failure inside the client is reduced to exactly one of these
    values and handed to the caller's callback.
    """

    SUCCESS = 0
    # The endpoint answered with something other than JSON
    UNSUPPORTED_CONTENT_TYPE = 1
    # JSON answer without the fields the operation needs
    INVALID_RESPONSE_FORMAT = 2
    UNKNOWN_ERROR = 3
    CONNECTION_ERROR = 4
    # Refresh token rejected or interactive authorization denied
    INVALID_GRANT = 5


class AuthenticationMethod(Enum):
    """How the interactive authorization receives its redirect."""

    LOOPBACK_IP = "loopback_ip"


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth client id/secret pair of the desktop app."""

    client_id: str
    client_secret: str = field(repr=False)


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by the token endpoint."""

    access_token: str
    expires_on: int  # Unix timestamp
    refresh_token: str | None = None


@dataclass(frozen=True)
class TokenResult:
    """What a token callback receives: a status and, on success, tokens."""

    status: Status
    tokens: TokenSet | None = None

    @classmethod
    def failed(cls, status: Status) -> "TokenResult":
        return cls(status=status)

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS and self.tokens is not None

    @property
    def access_token(self) -> str:
        return self.tokens.access_token if self.tokens else ""

    @property
    def expires_on(self) -> int:
        return self.tokens.expires_on if self.tokens else 0

    @property
    def refresh_token(self) -> str:
        if self.tokens and self.tokens.refresh_token:
            return self.tokens.refresh_token
        return ""


class JsonDocument:
    """Read-only view over a parsed JSON object with typed field access.

    Anything that is not a JSON object is treated as an empty document.
    """

    def __init__(self, data: Any = None):
        self._data: dict[str, Any] = data if isinstance(data, dict) else {}

    def __repr__(self) -> str:
        return f"JsonDocument({self._data!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JsonDocument):
            return NotImplemented
        return self._data == other._data

    def __contains__(self, key: str) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def try_get_string(self, key: str) -> str | None:
        value = self._data.get(key)
        return value if isinstance(value, str) else None

    def try_get_int(self, key: str) -> int | None:
        value = self._data.get(key)
        # bool is an int subclass, but `true` is not a number of seconds
        if isinstance(value, bool) or not isinstance(value, int):
            return None
        return value

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)


@dataclass(frozen=True)
class RequestOutcome:
    """Either a successful JSON document or a failure status, never both.

    Use :meth:`success` and :meth:`failure` to build instances.
    """

    document: JsonDocument | None = None
    status: Status = Status.SUCCESS

    def __post_init__(self):
        if self.document is None and self.status is Status.SUCCESS:
            raise ValueError("A successful outcome needs a document")
        if self.document is not None and self.status is not Status.SUCCESS:
            raise ValueError("A failed outcome cannot carry a document")

    @classmethod
    def success(cls, document: JsonDocument) -> "RequestOutcome":
        return cls(document=document)

    @classmethod
    def failure(cls, status: Status) -> "RequestOutcome":
        if status is Status.SUCCESS:
            raise ValueError("Status.SUCCESS is not a failure")
        return cls(status=status)

    @property
    def is_success(self) -> bool:
        return self.document is not None


@dataclass(frozen=True)
class AuthorizationQuery:
    """Query parameters the provider sends to the loopback redirect."""

    code: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_params(cls, params: dict[str, list[str]]) -> "AuthorizationQuery":
        """Build from ``parse_qs`` output, keeping the first value of each key."""

        def first(key: str) -> str | None:
            values = params.get(key)
            return values[0] if values else None

        code = first("code")
        if code:
            return cls(code=code)
        return cls(error=first("error") or "", error_description=first("error_description"))

    @property
    def success(self) -> bool:
        return bool(self.code)


# Handler bound to the loopback route: receives the redirect, returns HTML
RedirectHandler = Callable[[AuthorizationQuery], str]

RefreshCallback = Callable[[TokenResult], None]
ManualAuthenticationCallback = Callable[[TokenResult], None]
AccessTokenCheckCallback = Callable[[Status], None]

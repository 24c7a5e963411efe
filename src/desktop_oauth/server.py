"""Local loopback server receiving the OAuth redirect.

The server owns at most one route. Binding a new route replaces the
previous one, so only the most recent interactive authorization can
receive a redirect.
"""

from __future__ import annotations

import html
import itertools
import logging
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

from .errors import LoopbackBindError
from .models import AuthorizationQuery, RedirectHandler

logger = logging.getLogger(__name__)

HTML_CONTENT_TYPE = "text/html; charset=utf-8"


def render_page(title: str, message: str) -> str:
    """Acknowledgment page shown in the browser after the redirect."""
    return (
        "<!doctype html><html><head><title>{title}</title></head>"
        "<body>{message} You can now close the tab. </body></html>"
    ).format(title=html.escape(title), message=html.escape(message))


def success_page(app_name: str) -> str:
    return render_page(
        "Authentication succeed",
        f"Authentication succeed. Return to {app_name}, please.",
    )


def failure_page(app_name: str) -> str:
    return render_page(
        "Authentication failed",
        f"Authentication failed. Return to {app_name}, please.",
    )


NOT_FOUND_PAGE = render_page("Not found", "Nothing is waiting for a redirect here.")

# How often serve_forever checks for a shutdown request, in seconds
POLL_INTERVAL = 0.05


def _content_length(value: str | None) -> int | None:
    """Parse a Content-Length header; None if it is malformed."""
    if not value:
        return 0
    try:
        length = int(value)
    except ValueError:
        return None
    return length if length >= 0 else None


def _shutdown_listener(httpd: ThreadingHTTPServer, thread: threading.Thread | None) -> None:
    httpd.shutdown()
    httpd.server_close()
    if thread is not None:
        thread.join(timeout=1)


@dataclass(frozen=True)
class RouteToken:
    """Opaque handle returned by :meth:`LoopbackCallbackServer.bind`."""

    id: int
    port: int
    path: str


@dataclass
class PendingLoopbackSession:
    """The route currently waiting for a redirect."""

    token: RouteToken
    redirect_uri: str
    handler: RedirectHandler
    consumed: bool = False


class _LoopbackHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_port = False

    def __init__(self, address, handler_class, owner: "LoopbackCallbackServer"):
        self.owner = owner
        super().__init__(address, handler_class)


class _CallbackRequestHandler(BaseHTTPRequestHandler):
    """Routes GET/POST requests to the owner's bound session."""

    server: _LoopbackHTTPServer

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        parsed = urlparse(self.path)
        self._dispatch(parsed.path, parse_qs(parsed.query))

    def do_POST(self):
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)

        # Providers using response_mode=form_post send the parameters in the body
        length = _content_length(self.headers.get("Content-Length"))
        if length is None:
            logger.warning("Rejecting a redirect with a malformed Content-Length")
            self.send_error(400, "Malformed Content-Length")
            return
        body = self.rfile.read(length) if length else b""
        content_type = self.headers.get("Content-Type", "")
        if body and content_type.startswith("application/x-www-form-urlencoded"):
            for key, values in parse_qs(body.decode("utf-8", errors="replace")).items():
                params.setdefault(key, []).extend(values)

        self._dispatch(parsed.path, params)

    def _dispatch(self, path: str, params: dict[str, list[str]]):
        status, page = self.server.owner.dispatch(path, params, port=self.server.server_address[1])
        payload = page.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", HTML_CONTENT_TYPE)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)


class LoopbackCallbackServer:
    """Local server for catching OAuth redirects.

    Usage:
        server = LoopbackCallbackServer()

        token = server.bind(8080, "/google_oauth", handler)
        # the provider redirects the browser to
        # http://127.0.0.1:8080/google_oauth?code=...
        server.unbind(token)

        server.close()

    ``handler`` runs on a listener thread, receives the parsed
    :class:`AuthorizationQuery` and returns the HTML shown in the browser.
    It is invoked at most once per bound route.
    """

    def __init__(self, host: str = "127.0.0.1"):
        self.host = host
        self._httpd: _LoopbackHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._session: PendingLoopbackSession | None = None
        # Guards _session, which the listener threads read
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    @property
    def is_running(self) -> bool:
        return self._httpd is not None

    @property
    def port(self) -> int | None:
        if self._httpd is None:
            return None
        return self._httpd.server_address[1]

    @property
    def session(self) -> PendingLoopbackSession | None:
        return self._session

    def bind(self, port: int, path: str, handler: RedirectHandler) -> RouteToken:
        """Bind ``handler`` to ``path``, replacing any existing route.

        Raises:
            LoopbackBindError: If the listener cannot be started on ``port``
        """
        with self._lock:
            previous, self._session = self._session, None
        if previous is not None:
            logger.info("Dropping the loopback route of a pending authorization (%s)", previous.redirect_uri)

        if self._httpd is not None and self.port != port:
            # The old port is not reused, so it can be released in the background
            self._stop_listener(wait=False)
        if self._httpd is None:
            self._start_listener(port)

        token = RouteToken(id=next(self._ids), port=port, path=path)
        session = PendingLoopbackSession(
            token=token,
            redirect_uri=f"http://{self.host}:{port}{path}",
            handler=handler,
        )
        with self._lock:
            self._session = session

        logger.debug("Loopback route bound: %s", session.redirect_uri)
        return token

    def unbind(self, token: RouteToken) -> None:
        """Remove the route identified by ``token``. Stale tokens are ignored."""
        with self._lock:
            if self._session is None or self._session.token != token:
                logger.debug("Loopback route %s is no longer bound", token.id)
                return
            self._session = None
        logger.debug("Loopback route %s unbound", token.id)

    def dispatch(
        self,
        path: str,
        params: dict[str, list[str]],
        port: int | None = None,
    ) -> tuple[int, str]:
        """Hand a request to the bound session.

        ``port`` is the port the request arrived on; a listener still
        shutting down after a port change does not reach the new route.

        Returns:
            HTTP status and HTML body to answer with
        """
        with self._lock:
            session = self._session
            if session is None or session.consumed or session.token.path != path:
                return 404, NOT_FOUND_PAGE
            if port is not None and session.token.port != port:
                return 404, NOT_FOUND_PAGE
            session.consumed = True

        query = AuthorizationQuery.from_params(params)
        try:
            return 200, session.handler(query)
        except Exception:
            logger.exception("Loopback redirect handler failed")
            return 500, render_page("Authentication failed", "Authentication failed.")

    def close(self, wait: bool = True) -> None:
        """Drop the route and stop the listener.

        With ``wait=False`` the listener is shut down on a background
        thread and the port may stay open for a few more milliseconds.
        """
        with self._lock:
            self._session = None
        self._stop_listener(wait=wait)

    def _start_listener(self, port: int) -> None:
        try:
            httpd = _LoopbackHTTPServer((self.host, port), _CallbackRequestHandler, owner=self)
        except OSError as e:
            logger.error("The loopback listener cannot be started on %s:%s: %s", self.host, port, e)
            raise LoopbackBindError(self.host, port, str(e)) from e

        self._httpd = httpd
        self._thread = threading.Thread(
            target=httpd.serve_forever,
            kwargs={"poll_interval": POLL_INTERVAL},
            name=f"oauth-loopback-{port}",
            daemon=True,
        )
        self._thread.start()
        logger.info("Loopback listener started on %s:%s", self.host, port)

    def _stop_listener(self, wait: bool = True) -> None:
        httpd, thread = self._httpd, self._thread
        self._httpd = None
        self._thread = None
        if httpd is None:
            return

        if wait:
            _shutdown_listener(httpd, thread)
        else:
            threading.Thread(
                target=_shutdown_listener,
                args=(httpd, thread),
                name="oauth-loopback-shutdown",
                daemon=True,
            ).start()
        logger.debug("Loopback listener stopped on %s:%s", self.host, httpd.server_address[1])

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

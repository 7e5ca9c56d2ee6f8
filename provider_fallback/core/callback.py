"""
OAuth redirect listener.

Serves a provider's ``redirect_uri`` for a single callback, finishes the
authorization-code flow with the code it receives, and is abandoned after a
timeout. A state left pending by an abandoned wait is harmless.
"""

import html
import logging
import time
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse

from provider_fallback.core.credentials import Credential
from provider_fallback.core.errors import AuthError, AuthErrorKind

logger = logging.getLogger(__name__)

CALLBACK_WAIT_SECONDS = 300
POLL_INTERVAL_SECONDS = 0.5

PAGE_TEMPLATE = (
    "<html><body><h1>{title}</h1><p>{message}</p>"
    "<p>You can close this window.</p></body></html>"
)


class _CallbackHandler(BaseHTTPRequestHandler):
    server: "CallbackListener"

    def do_GET(self):
        url = urlparse(self.path)
        if url.path != self.server.callback_path:
            self.send_page(HTTPStatus.NOT_FOUND, "Not found", "Unknown callback path.")
            return
        params = {key: values[0] for key, values in parse_qs(url.query).items()}
        self.server.handle_callback(self, params)

    def send_page(self, status: int, title: str, message: str) -> None:
        body = PAGE_TEMPLATE.format(title=html.escape(title), message=html.escape(message)).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        logger.debug("Callback request: " + format, *args)


class CallbackListener(HTTPServer):
    """One-shot HTTP listener for an OAuth authorization callback.

    Binds on construction (host and port default to the provider's
    ``redirect_uri``) so the authorization URL can be shown only once the
    listener is ready. ``wait()`` then blocks until a callback arrives or the
    timeout passes, and always closes the socket.
    """

    def __init__(self, manager, provider_id: str, host: Optional[str] = None, port: Optional[int] = None):
        provider = manager.catalog.get_provider(provider_id)
        if provider.oauth is None:
            raise ValueError(f"Provider {provider_id} does not support OAuth")
        redirect = urlparse(provider.oauth.redirect_uri)
        self.manager = manager
        self.provider_id = provider_id
        self.callback_path = redirect.path or "/"
        self.credential: Optional[Credential] = None
        self.error: Optional[Exception] = None
        self.done = False
        super().__init__(
            (host or redirect.hostname or "localhost", redirect.port if port is None else port),
            _CallbackHandler,
        )

    @property
    def callback_url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}{self.callback_path}"

    def handle_callback(self, handler: _CallbackHandler, params: Dict[str, str]) -> None:
        self.done = True
        if params.get("error"):
            self.error = AuthError(
                f"Authorization denied: {params['error']}", AuthErrorKind.AUTHORIZATION_DENIED, self.provider_id
            )
            handler.send_page(HTTPStatus.BAD_REQUEST, "OAuth Error", params["error"])
            return
        try:
            self.credential = self.manager.complete_authorization_flow(
                self.provider_id, params.get("code", ""), params.get("state", "")
            )
        except (AuthError, ValueError) as e:
            self.error = e
            handler.send_page(HTTPStatus.INTERNAL_SERVER_ERROR, "Error", str(e))
            return
        handler.send_page(HTTPStatus.OK, "Success!", "Authentication complete.")

    def wait(self, timeout: float = CALLBACK_WAIT_SECONDS) -> Credential:
        """Serve requests until the callback arrives.

        Returns:
            The stored credential

        Raises:
            AuthError: AUTHORIZATION_DENIED if the provider returned an error,
                AUTHORIZATION_TIMEOUT if no callback arrived in time, or any
                error from completing the flow
        """
        deadline = time.monotonic() + timeout
        logger.info("Waiting for OAuth callback on %s", self.callback_url)
        try:
            while not self.done:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise AuthError(
                        "OAuth timeout - no callback received",
                        AuthErrorKind.AUTHORIZATION_TIMEOUT,
                        self.provider_id,
                    )
                self.timeout = min(POLL_INTERVAL_SECONDS, remaining)
                self.handle_request()
        finally:
            self.server_close()

        if self.error is not None:
            raise self.error
        return self.credential

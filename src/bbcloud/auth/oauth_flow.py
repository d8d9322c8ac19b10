"""OAuth 2.0 Authorization Code flow with a loopback callback listener.

:class:`OAuthFlow` performs one interactive login against Bitbucket Cloud:

1. Generates a 128-bit CSRF ``state`` and binds a temporary HTTP server on
   ``127.0.0.1`` with an ephemeral port.
2. Opens the authorization URL in the user's browser (best-effort; the URL
   is also printed so it can be pasted manually).
3. Waits for the provider to redirect to ``/callback`` and validates the
   ``state`` before looking at anything else in the query string.
4. Exchanges the authorization code at the token endpoint and persists the
   resulting :class:`~bbcloud.models.OAuthCredential`.

The listener is shut down as soon as the first callback is received or the
deadline passes, on every exit path. A flow instance can be run only once.

See Also:
    :mod:`bbcloud.auth.token_endpoint` for the code exchange request.
    :class:`bbcloud.auth.authenticator.Authenticator` for the refresh grant.
"""

from __future__ import annotations

import enum
import html
import secrets
import threading
import time
import webbrowser
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import httpx

from bbcloud.auth.token_endpoint import exchange_code
from bbcloud.config import Settings, load_settings
from bbcloud.exceptions import (
    AuthError,
    AuthorizationDeniedError,
    CSRFStateMismatchError,
    FlowTimeoutError,
)
from bbcloud.models import OAuthCredential
from bbcloud.output import get_output

if TYPE_CHECKING:
    from bbcloud.auth.credential_store import CredentialStore

CALLBACK_PATH = "/callback"
LOOPBACK_HOST = "127.0.0.1"

_PAGE = (
    "<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>bbcloud</title>"
    "</head><body><h2>{heading}</h2><p>{detail}</p></body></html>"
)


class FlowState(str, enum.Enum):
    """Lifecycle of an :class:`OAuthFlow`."""

    IDLE = "idle"
    AWAITING_REDIRECT = "awaiting_redirect"
    EXCHANGING = "exchanging"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _first(params: dict[str, list[str]], name: str) -> str:
    values = params.get(name)
    return values[0] if values else ""


class OAuthFlow:
    """One interactive authorization-code login.

    Args:
        client_id: OAuth consumer key.
        client_secret: OAuth consumer secret.
        store: Where the resulting credential is persisted. ``None`` skips
            persistence (the credential is still returned).
        settings: Endpoint URLs and timeouts; defaults to
            :func:`~bbcloud.config.load_settings`.
        scopes: Optional scopes to request. Bitbucket consumers usually
            define their scopes server-side, so this is normally empty.
        send_redirect_uri: Include the loopback callback URL as
            ``redirect_uri`` in the authorization request and the exchange.
            Bitbucket rejects a ``redirect_uri`` that differs from the
            consumer's configured callback, so this is off by default.
        open_browser: Launch the system browser on :meth:`start`.
        http_client: Optional :class:`httpx.Client` for the code exchange.

    Example::

        flow = OAuthFlow(client_id, client_secret, store=CredentialStore())
        credential = flow.run()  # blocks until the browser redirects back
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        store: Optional[CredentialStore] = None,
        settings: Optional[Settings] = None,
        scopes: Optional[list[str]] = None,
        send_redirect_uri: bool = False,
        open_browser: bool = True,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        if not client_id or not client_secret:
            raise AuthError("OAuth login requires both a client ID and a client secret")
        self._client_id = client_id
        self._client_secret = client_secret
        self._store = store
        self._settings = settings or load_settings()
        self._scopes = list(scopes or [])
        self._send_redirect_uri = send_redirect_uri
        self._open_browser = open_browser
        self._http_client = http_client

        self._flow_state = FlowState.IDLE
        self._csrf_state = secrets.token_hex(16)
        self._ran = False
        self._lock = threading.Lock()

        self._server: Optional[ThreadingHTTPServer] = None
        self._port = 0
        self._deadline = 0.0

        # One-shot slot filled by the first callback.
        self._resolved = threading.Event()
        self._closed = False
        self._code: Optional[str] = None
        self._failure: Optional[AuthError] = None

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> FlowState:
        """Current position in the flow's lifecycle."""
        return self._flow_state

    @property
    def csrf_state(self) -> str:
        """The ``state`` value the callback must echo back."""
        return self._csrf_state

    @property
    def callback_port(self) -> int:
        """Port the listener is bound to. Only valid after :meth:`start`."""
        if not self._port:
            raise RuntimeError("OAuthFlow has not been started")
        return self._port

    @property
    def callback_url(self) -> str:
        return f"http://{LOOPBACK_HOST}:{self.callback_port}{CALLBACK_PATH}"

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> str:
        """Bind the callback listener and open the browser.

        Returns:
            The authorization URL the user must visit.

        Raises:
            RuntimeError: If the flow has already been started.
            AuthError: If the loopback listener cannot be bound.
        """
        if self._flow_state is not FlowState.IDLE:
            raise RuntimeError("OAuthFlow has already been started")

        try:
            self._server = ThreadingHTTPServer((LOOPBACK_HOST, 0), self._make_handler())
        except OSError as exc:
            self._flow_state = FlowState.FAILED
            raise AuthError(f"Cannot start OAuth callback listener: {exc}") from exc

        self._port = self._server.server_address[1]
        self._deadline = time.monotonic() + self._settings.oauth_timeout
        threading.Thread(
            target=self._server.serve_forever,
            name="bbcloud-oauth-callback",
            daemon=True,
        ).start()
        self._flow_state = FlowState.AWAITING_REDIRECT

        output = get_output()
        output.debug(f"OAuth callback listener bound to {self.callback_url}")

        auth_url = self.authorization_url()
        output.info("Open this URL in your browser to authorize bbcloud:")
        output.info(f"  {auth_url}")
        output.info(f"Callback URL: {self.callback_url}")

        if self._open_browser:
            # webbrowser.open may block on some platforms
            threading.Thread(target=webbrowser.open, args=(auth_url,), daemon=True).start()

        return auth_url

    def authorization_url(self) -> str:
        """Build the provider URL that starts the authorization."""
        params: dict[str, str] = {
            "client_id": self._client_id,
            "response_type": "code",
            "state": self._csrf_state,
        }
        if self._send_redirect_uri:
            params["redirect_uri"] = self.callback_url
        if self._scopes:
            params["scope"] = " ".join(self._scopes)
        return f"{self._settings.authorize_url}?{urlencode(params)}"

    def run(self) -> OAuthCredential:
        """Run the flow to completion.

        Starts the listener if :meth:`start` has not been called yet, waits
        for the redirect, exchanges the code and persists the credential.

        Returns:
            The newly issued credential.

        Raises:
            RuntimeError: If this flow has already been run.
            CSRFStateMismatchError: If the callback's ``state`` is wrong.
            AuthorizationDeniedError: If the provider reported an error or
                sent no code.
            FlowTimeoutError: If no callback arrived in time.
            TokenExchangeError: If the token endpoint rejected the code.
        """
        with self._lock:
            if self._ran:
                raise RuntimeError("OAuthFlow instances are single-use")
            self._ran = True

        try:
            if self._flow_state is FlowState.IDLE:
                self.start()
            code = self._wait_for_code()

            self._flow_state = FlowState.EXCHANGING
            token = exchange_code(
                self._settings.token_url,
                self._client_id,
                self._client_secret,
                code,
                redirect_uri=self.callback_url if self._send_redirect_uri else None,
                timeout=self._settings.request_timeout,
                client=self._http_client,
            )
            credential = token.to_credential(self._client_id, self._client_secret)
            if self._store is not None:
                self._store.save(credential)
        except BaseException:
            self._flow_state = FlowState.FAILED
            raise
        finally:
            self.close()

        self._flow_state = FlowState.SUCCEEDED
        get_output().debug("OAuth login complete")
        return credential

    def close(self) -> None:
        """Stop the callback listener. Safe to call more than once."""
        with self._lock:
            self._closed = True
            server, self._server = self._server, None
        if server is not None:
            server.shutdown()
            server.server_close()
            get_output().debug("OAuth callback listener shut down")

    # ------------------------------------------------------------------ #
    # Callback handling
    # ------------------------------------------------------------------ #

    def _wait_for_code(self) -> str:
        try:
            remaining = max(self._deadline - time.monotonic(), 0.0)
            received = self._resolved.wait(remaining)
            with self._lock:
                # A callback racing the deadline still counts if it got in first.
                received = received or self._resolved.is_set()
                self._closed = True
            if not received:
                raise FlowTimeoutError(
                    f"No OAuth callback received within "
                    f"{self._settings.oauth_timeout:.0f} seconds"
                )
        finally:
            self.close()

        if self._failure is not None:
            raise self._failure
        assert self._code is not None
        return self._code

    def _resolve(self, params: dict[str, list[str]]) -> tuple[int, str, str]:
        """Validate one callback and fill the result slot.

        Returns:
            ``(status, heading, detail)`` for the page shown in the browser.
        """
        with self._lock:
            if self._closed or self._resolved.is_set():
                return 400, "Login already handled", "This login request is no longer active."

            state = _first(params, "state")
            if not state or not secrets.compare_digest(
                state.encode("utf-8"), self._csrf_state.encode("utf-8")
            ):
                self._failure = CSRFStateMismatchError(
                    "OAuth state mismatch; the callback did not come from this login"
                )
            elif "error" in params:
                self._failure = AuthorizationDeniedError(
                    _first(params, "error"), _first(params, "error_description")
                )
            elif not _first(params, "code"):
                self._failure = AuthorizationDeniedError("no code in callback")
            else:
                self._code = _first(params, "code")
            self._resolved.set()

        if self._failure is not None:
            return 400, "Authorization failed", str(self._failure)
        return (
            200,
            "Authorization successful",
            "You can close this window and return to the terminal.",
        )

    def _make_handler(self) -> type[BaseHTTPRequestHandler]:
        flow = self

        class CallbackHandler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                parsed = urlparse(self.path)
                if parsed.path != CALLBACK_PATH:
                    self._reply(404, "Not found", "")
                    return
                status, heading, detail = flow._resolve(parse_qs(parsed.query))
                self._reply(status, heading, detail)

            def _reply(self, status: int, heading: str, detail: str) -> None:
                body = _PAGE.format(heading=html.escape(heading), detail=html.escape(detail))
                payload = body.encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def log_message(self, format: str, *args: Any) -> None:
                # Request lines carry the authorization code.
                pass

        return CallbackHandler

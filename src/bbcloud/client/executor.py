"""Authenticated request execution with a single refresh-and-retry on 401.

This module provides :class:`RequestExecutor`, the blocking HTTP client used
by bbcloud to talk to the Bitbucket Cloud REST API. It wraps
:class:`httpx.Client` and layers on:

- **Auth injection** -- the ``Authorization`` header is rebuilt from the
  :class:`~bbcloud.auth.authenticator.Authenticator` on every attempt, so a
  proactive refresh (expired token) happens before the request is sent.
- **Reactive refresh** -- a ``401`` on the first attempt with a refreshable
  credential forces a refresh and retries exactly once.
- **Error mapping** -- any non-2xx response that survives the retry raises
  :class:`~bbcloud.exceptions.APIError`; network failures raise
  :class:`~bbcloud.exceptions.ConnectionError_`.

Debug output names the method, path and status only. Headers and bodies are
never printed.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Optional

import httpx

from bbcloud.client.response import extract_response_data
from bbcloud.config import Settings, load_settings
from bbcloud.exceptions import APIError, ConnectionError_
from bbcloud.output import get_output
from bbcloud.scopes import SCOPES_HEADER, parse_scopes

if TYPE_CHECKING:
    from bbcloud.auth.authenticator import Authenticator


class _Attempt(enum.Enum):
    FIRST = "first"
    RETRY = "retry"


class RequestExecutor:
    """Send authenticated requests to the Bitbucket Cloud API.

    Must be used as a context manager so that the underlying connection pool
    is opened and closed. One executor may be shared by many threads.

    Args:
        authenticator: Supplies and refreshes the ``Authorization`` header.
        settings: Base URL and request timeout; defaults to
            :func:`~bbcloud.config.load_settings`.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.

    Example::

        with RequestExecutor(authenticator) as api:
            user = api.get_json("/user")
    """

    def __init__(
        self,
        authenticator: Authenticator,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._authenticator = authenticator
        self._settings = settings or load_settings()
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    # ------------------------------------------------------------------ #
    # Context manager
    # ------------------------------------------------------------------ #

    def __enter__(self) -> RequestExecutor:
        self._client = httpx.Client(
            base_url=self._settings.api_url,
            timeout=self._settings.request_timeout,
            headers={"Accept": "application/json"},
            transport=self._transport,
        )
        return self

    def __exit__(self, *args: object) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def authenticator(self) -> Authenticator:
        return self._authenticator

    # ------------------------------------------------------------------ #
    # Core request path
    # ------------------------------------------------------------------ #

    def execute(
        self,
        method: str,
        path: str,
        json_body: Optional[Any] = None,
        params: Optional[dict[str, Any]] = None,
        content: Optional[bytes | str] = None,
        content_type: Optional[str] = None,
    ) -> httpx.Response:
        """Send one logical request, retrying once after a refresh on 401.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, ...).
            path: URL path appended to the API base URL.
            json_body: JSON-serialisable body.
            params: Query parameters.
            content: Raw body, used when *json_body* is ``None``.
            content_type: ``Content-Type`` for a raw *content* body.

        Returns:
            The successful (2xx) :class:`httpx.Response`.

        Raises:
            APIError: On any non-2xx status after the permitted retry.
            ConnectionError_: On network or timeout errors.
            ReauthRequiredError: If the credential expired and cannot be
                refreshed.
            RefreshError: If a needed refresh failed.
        """
        assert self._client is not None, "Executor not initialised -- use as context manager"
        output = get_output()
        method = method.upper()

        attempt = _Attempt.FIRST
        while True:
            credential = self._authenticator.fresh_credential()
            headers = {"Authorization": credential.authorization_header()}
            if content is not None and json_body is None and content_type:
                headers["Content-Type"] = content_type

            kwargs: dict[str, Any] = {"headers": headers, "params": params}
            if json_body is not None:
                kwargs["json"] = json_body
            elif content is not None:
                kwargs["content"] = content

            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                output.debug(f"{method} {path} -> {type(exc).__name__}")
                raise ConnectionError_(f"Request to {path} failed: {exc}") from exc

            output.debug(f"{method} {path} -> {response.status_code} ({attempt.value} attempt)")

            if (
                response.status_code == 401
                and attempt is _Attempt.FIRST
                and self._authenticator.is_refreshable
            ):
                output.debug("Received 401; refreshing credential and retrying once")
                self._authenticator.force_refresh(stale=credential)
                attempt = _Attempt.RETRY
                continue
            break

        if not response.is_success:
            raise APIError(response.status_code, response.text)
        return response

    # ------------------------------------------------------------------ #
    # Convenience helpers
    # ------------------------------------------------------------------ #

    def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET *path* and return the decoded body (``None`` when empty)."""
        return extract_response_data(self.execute("GET", path, params=params))

    def get_raw(
        self, path: str, params: Optional[dict[str, Any]] = None
    ) -> tuple[bytes, str]:
        """GET *path* and return ``(body bytes, content type)``.

        Used for non-JSON resources such as file contents and diffs.
        """
        response = self.execute("GET", path, params=params)
        return response.content, response.headers.get("content-type", "")

    def get_with_scopes(
        self, path: str, params: Optional[dict[str, Any]] = None
    ) -> tuple[Any, list[str]]:
        """GET *path* and also return the scopes from ``X-OAuth-Scopes``.

        Returns:
            ``(decoded body, scopes)``. Scopes are empty when the header is
            absent.
        """
        response = self.execute("GET", path, params=params)
        return extract_response_data(response), parse_scopes(response.headers.get(SCOPES_HEADER))

    def post_json(self, path: str, body: Any = None) -> Any:
        return extract_response_data(self.execute("POST", path, json_body=body))

    def put_json(self, path: str, body: Any = None) -> Any:
        return extract_response_data(self.execute("PUT", path, json_body=body))

    def delete(self, path: str, params: Optional[dict[str, Any]] = None) -> None:
        self.execute("DELETE", path, params=params)

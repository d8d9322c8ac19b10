"""Calls to the OAuth 2.0 token endpoint.

Both grants used by bbcloud go through :func:`request_token`:

- ``grant_type=authorization_code`` from
  :class:`~bbcloud.auth.oauth_flow.OAuthFlow` (see :func:`exchange_code`).
- ``grant_type=refresh_token`` from
  :class:`~bbcloud.auth.authenticator.Authenticator` (see
  :func:`refresh_token_grant`).

Requests are form-encoded and the client authenticates with HTTP Basic
(``client_id:client_secret``), as :rfc:`6749` section 2.3.1 prescribes for
confidential clients.
"""

from __future__ import annotations

from typing import Optional

import httpx
from pydantic import ValidationError

from bbcloud.exceptions import RefreshError, TokenExchangeError
from bbcloud.models import TokenResponse
from bbcloud.output import get_output

DEFAULT_TOKEN_TIMEOUT = 30.0


def request_token(
    token_url: str,
    client_id: str,
    client_secret: str,
    form: dict[str, str],
    error_cls: type[TokenExchangeError] | type[RefreshError],
    timeout: float = DEFAULT_TOKEN_TIMEOUT,
    client: Optional[httpx.Client] = None,
) -> TokenResponse:
    """POST *form* to the token endpoint and parse the token response.

    Args:
        token_url: The provider's token endpoint.
        client_id: OAuth consumer key (Basic auth username).
        client_secret: OAuth consumer secret (Basic auth password).
        form: Grant parameters, sent as ``application/x-www-form-urlencoded``.
        error_cls: Exception type raised on failure, so callers surface
            :class:`TokenExchangeError` or :class:`RefreshError` as
            appropriate.
        timeout: Request timeout in seconds.
        client: Optional :class:`httpx.Client` to send the request with;
            defaults to a one-off ``httpx.post``.

    Returns:
        The parsed :class:`~bbcloud.models.TokenResponse`.

    Raises:
        TokenExchangeError | RefreshError: On network errors, non-2xx
            responses, or a response body without ``access_token``.
    """
    output = get_output()
    output.debug(f"POST {token_url} (grant_type={form.get('grant_type')})")

    post = client.post if client is not None else httpx.post
    try:
        response = post(
            token_url,
            data=form,
            auth=(client_id, client_secret),
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as exc:
        raise error_cls(None, str(exc), message=f"{error_cls.action} failed: {exc}") from exc

    output.debug(f"Token endpoint responded {response.status_code}")
    if not response.is_success:
        raise error_cls(response.status_code, response.text)

    try:
        return TokenResponse.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise error_cls(
            response.status_code,
            "",
            message=f"{error_cls.action} returned an invalid token response",
        ) from exc


def exchange_code(
    token_url: str,
    client_id: str,
    client_secret: str,
    code: str,
    redirect_uri: Optional[str] = None,
    timeout: float = DEFAULT_TOKEN_TIMEOUT,
    client: Optional[httpx.Client] = None,
) -> TokenResponse:
    """Exchange an authorization code for tokens.

    ``redirect_uri`` must be included only if it was part of the
    authorization request.
    """
    form = {"grant_type": "authorization_code", "code": code}
    if redirect_uri:
        form["redirect_uri"] = redirect_uri
    return request_token(
        token_url, client_id, client_secret, form, TokenExchangeError, timeout, client
    )


def refresh_token_grant(
    token_url: str,
    client_id: str,
    client_secret: str,
    refresh_token: str,
    timeout: float = DEFAULT_TOKEN_TIMEOUT,
    client: Optional[httpx.Client] = None,
) -> TokenResponse:
    """Obtain a new access token with a refresh token."""
    form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
    return request_token(
        token_url, client_id, client_secret, form, RefreshError, timeout, client
    )

"""Login with a static secret (Atlassian API token or app password).

:func:`api_token_login` verifies the secret against ``GET /user`` before
saving it, so a typo is reported immediately instead of on the next API call.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple, Optional

import httpx

from bbcloud.auth.authenticator import Authenticator
from bbcloud.client.executor import RequestExecutor
from bbcloud.config import Settings
from bbcloud.exceptions import APIError, AuthError
from bbcloud.models import StaticCredential

if TYPE_CHECKING:
    from bbcloud.auth.credential_store import CredentialStore


class LoginResult(NamedTuple):
    """Outcome of a successful login."""

    credential: StaticCredential
    display_name: Optional[str]


def api_token_login(
    identity: str,
    secret: str,
    store: Optional[CredentialStore] = None,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> LoginResult:
    """Verify *identity*/*secret* against the API and persist them.

    A ``403`` from ``/user`` means the credentials are valid but lack the
    ``account`` scope; the login still succeeds without a display name.

    Args:
        identity: Atlassian account email (or Bitbucket username for app
            passwords).
        secret: The API token or app password.
        store: Where to save the credential. ``None`` skips persistence.
        settings: API base URL and timeouts.
        transport: Optional httpx transport for tests.

    Returns:
        The saved credential and the account's display name, if known.

    Raises:
        AuthError: If either value is empty or the API rejects them (401).
        APIError: For any other unexpected API status.
        ConnectionError_: If the API is unreachable.
    """
    identity = identity.strip()
    secret = secret.strip()
    if not identity or not secret:
        raise AuthError("Both an email and an API token are required")

    candidate = StaticCredential(identity=identity, secret=secret)
    display_name: Optional[str] = None
    scopes: list[str] = []

    with RequestExecutor(Authenticator(candidate), settings=settings, transport=transport) as api:
        try:
            user, scopes = api.get_with_scopes("/user")
        except APIError as exc:
            if exc.status_code == 401:
                raise AuthError("Invalid credentials: the API rejected the email or token") from exc
            if exc.status_code != 403:
                raise
        else:
            if isinstance(user, dict):
                display_name = user.get("display_name") or user.get("nickname")

    credential = candidate.model_copy(update={"granted_scopes": scopes})
    if store is not None:
        store.save(credential)
    return LoginResult(credential, display_name)

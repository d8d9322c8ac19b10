"""Thread-safe owner of the active credential.

:class:`Authenticator` hands out ``Authorization`` header values and keeps
the underlying credential fresh. Refreshes are serialised by a single lock
with double-checked locking, so any number of threads that observe the same
expired token trigger exactly one call to the token endpoint.

Credentials are immutable models: a successful refresh builds a new
:class:`~bbcloud.models.OAuthCredential`, persists it, and only then swaps it
in. Readers therefore see either the old or the new credential, never a
partially updated one.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Iterable, Optional

import httpx

from bbcloud.auth.token_endpoint import refresh_token_grant
from bbcloud.config import Settings, load_settings
from bbcloud.exceptions import ReauthRequiredError, RefreshError
from bbcloud.models import Credential, OAuthCredential
from bbcloud.output import get_output
from bbcloud.scopes import has_required_scope

if TYPE_CHECKING:
    from bbcloud.auth.credential_store import CredentialStore

_REAUTH_HINT = "Run 'bbcloud auth login' to sign in again."


class Authenticator:
    """Produce authorization headers for one credential, refreshing as needed.

    Args:
        credential: The credential to start with.
        store: Where refreshed credentials are persisted. Pass ``None`` for
            credentials that did not come from disk (environment overrides).
        settings: Token endpoint URL, request timeout and expiry buffer.
        http_client: Optional :class:`httpx.Client` for the refresh grant.
    """

    def __init__(
        self,
        credential: Credential,
        store: Optional[CredentialStore] = None,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._credential: Credential = credential
        self._store = store
        self._settings = settings or load_settings()
        self._http_client = http_client
        self._lock = threading.Lock()
        self._last_error: Optional[Exception] = None

    @property
    def credential(self) -> Credential:
        """The credential currently in use."""
        return self._credential

    @property
    def last_error(self) -> Optional[Exception]:
        """The most recent refresh failure, cleared by the next success."""
        return self._last_error

    @property
    def is_refreshable(self) -> bool:
        return self._credential.is_refreshable

    def fresh_credential(self) -> Credential:
        """Return the credential to send next, refreshing it first if expired.

        Raises:
            ReauthRequiredError: If the credential expired and cannot be
                refreshed.
            RefreshError: If the refresh grant failed.
        """
        credential = self._credential
        if self._is_expired(credential):
            with self._lock:
                # Another thread may have refreshed while we waited.
                credential = self._credential
                if self._is_expired(credential):
                    credential = self._refresh_locked(credential)
        return credential

    def auth_header(self) -> str:
        """Return the ``Authorization`` header value for the next request."""
        return self.fresh_credential().authorization_header()

    def force_refresh(self, stale: Optional[Credential] = None) -> Credential:
        """Refresh regardless of expiry, e.g. after the server answered 401.

        Args:
            stale: The credential the rejected request was sent with. When
                the active credential has already moved past it, that newer
                credential is returned without another refresh grant.
                Defaults to the credential active on entry.

        Returns:
            The credential in use after the call.

        Raises:
            ReauthRequiredError: If the credential cannot be refreshed.
            RefreshError: If the refresh grant failed.
        """
        observed = stale if stale is not None else self._credential
        with self._lock:
            current = self._credential
            if current is not observed:
                get_output().debug("Credential already refreshed by another caller")
                return current
            return self._refresh_locked(current)

    def permits(self, required: Iterable[str]) -> bool:
        """Check whether the active credential holds any of *required*.

        Credentials with unknown scopes are allowed only when
        ``BITBUCKET_ALLOW_UNKNOWN_SCOPES`` is enabled.
        """
        return has_required_scope(
            self._credential.granted_scopes,
            required,
            allow_unknown=self._settings.allow_unknown_scopes,
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _is_expired(self, credential: Credential) -> bool:
        return credential.is_expired(buffer_seconds=self._settings.expiry_buffer)

    def _refresh_locked(self, credential: Credential) -> Credential:
        """Run the refresh grant. The caller must hold ``self._lock``."""
        if not isinstance(credential, OAuthCredential) or not credential.is_refreshable:
            raise ReauthRequiredError(
                f"Access token expired and cannot be refreshed. {_REAUTH_HINT}"
            )

        output = get_output()
        output.debug("Refreshing OAuth access token")
        try:
            token = refresh_token_grant(
                self._settings.token_url,
                credential.client_id,
                credential.client_secret,
                credential.refresh_token or "",
                timeout=self._settings.request_timeout,
                client=self._http_client,
            )
        except RefreshError as exc:
            self._last_error = exc
            output.debug(f"Token refresh failed: status {exc.status_code}")
            raise

        refreshed = token.to_credential(
            credential.client_id,
            credential.client_secret,
            previous_refresh_token=credential.refresh_token,
            previous_scopes=credential.granted_scopes,
        )
        if self._store is not None:
            try:
                self._store.save(refreshed)
            except OSError as exc:
                self._last_error = exc
                raise
        self._credential = refreshed
        self._last_error = None
        output.debug("OAuth access token refreshed")
        return refreshed

"""Tests for the thread-safe Authenticator."""

from __future__ import annotations

import base64
import threading
import time
from datetime import timedelta
from unittest.mock import patch

import httpx
import pytest

from bbcloud.auth.authenticator import Authenticator
from bbcloud.auth.credential_store import CredentialStore
from bbcloud.config import Settings, load_settings
from bbcloud.exceptions import ReauthRequiredError, RefreshError
from bbcloud.models import OAuthCredential, StaticCredential, utcnow

POST_TARGET = "bbcloud.auth.token_endpoint.httpx.post"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _expired(cred: OAuthCredential) -> OAuthCredential:
    return cred.model_copy(update={"created_at": utcnow() - timedelta(hours=2)})


def _refresh_response(
    access_token: str = "access-new", status_code: int = 200, **extra: object
) -> httpx.Response:
    request = httpx.Request("POST", "https://bitbucket.test/site/oauth2/access_token")
    if status_code >= 400:
        return httpx.Response(status_code, text="invalid refresh token", request=request)
    body: dict[str, object] = {"access_token": access_token, "expires_in": 3600}
    body.update(extra)
    return httpx.Response(status_code, json=body, request=request)


@pytest.fixture(autouse=True)
def _quiet(quiet_output: object) -> None:
    """Silence diagnostics for every test in this module."""


# ---------------------------------------------------------------------------
# Header selection
# ---------------------------------------------------------------------------


class TestAuthHeader:
    def test_static_basic(self, static_credential: StaticCredential, settings: Settings) -> None:
        auth = Authenticator(static_credential, settings=settings)
        expected = base64.b64encode(b"a@b.com:tok123").decode()
        assert auth.auth_header() == f"Basic {expected}"

    def test_static_never_refreshes(
        self, static_credential: StaticCredential, settings: Settings
    ) -> None:
        auth = Authenticator(static_credential, settings=settings)
        with patch(POST_TARGET) as mock_post:
            for _ in range(3):
                auth.auth_header()
        mock_post.assert_not_called()

    def test_fresh_oauth_is_bearer(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(oauth_credential, settings=settings)
        with patch(POST_TARGET) as mock_post:
            assert auth.auth_header() == "Bearer access-old"
        mock_post.assert_not_called()

    def test_expired_oauth_refreshes_first(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(_expired(oauth_credential), settings=settings)
        with patch(POST_TARGET, return_value=_refresh_response()) as mock_post:
            assert auth.auth_header() == "Bearer access-new"

        mock_post.assert_called_once()
        kwargs = mock_post.call_args.kwargs
        assert kwargs["data"] == {"grant_type": "refresh_token", "refresh_token": "refresh-old"}
        assert kwargs["auth"] == ("client-id", "client-secret")
        assert mock_post.call_args.args[0] == settings.token_url

    def test_expired_without_refresh_token(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        cred = _expired(oauth_credential).model_copy(update={"refresh_token": None})
        auth = Authenticator(cred, settings=settings)
        with patch(POST_TARGET) as mock_post:
            with pytest.raises(ReauthRequiredError):
                auth.auth_header()
        mock_post.assert_not_called()


# ---------------------------------------------------------------------------
# Refresh outcomes
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_success_persists_before_install(
        self, oauth_credential: OAuthCredential, settings: Settings, store: CredentialStore
    ) -> None:
        auth = Authenticator(_expired(oauth_credential), store=store, settings=settings)
        with patch(POST_TARGET, return_value=_refresh_response()):
            auth.auth_header()

        stored = store.load()
        assert isinstance(stored, OAuthCredential)
        assert stored.access_token == "access-new"
        assert stored == auth.credential
        assert auth.last_error is None

    def test_keeps_refresh_token_and_scopes_when_omitted(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(oauth_credential, settings=settings)
        with patch(POST_TARGET, return_value=_refresh_response()):
            new = auth.force_refresh()
        assert isinstance(new, OAuthCredential)
        assert new.refresh_token == "refresh-old"
        assert new.granted_scopes == ["repository", "pullrequest:write"]
        assert new.client_id == "client-id"
        assert new.is_expired() is False

    def test_rotated_refresh_token_is_stored(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(oauth_credential, settings=settings)
        with patch(POST_TARGET, return_value=_refresh_response(refresh_token="refresh-new")):
            new = auth.force_refresh()
        assert new.refresh_token == "refresh-new"

    def test_failure_keeps_credential(
        self, oauth_credential: OAuthCredential, settings: Settings, store: CredentialStore
    ) -> None:
        original = _expired(oauth_credential)
        store.save(original)
        auth = Authenticator(original, store=store, settings=settings)

        with patch(POST_TARGET, return_value=_refresh_response(status_code=400)):
            with pytest.raises(RefreshError) as exc_info:
                auth.auth_header()

        assert exc_info.value.status_code == 400
        assert auth.credential is original
        assert auth.last_error is exc_info.value
        assert store.load() == original

    def test_failure_then_success_clears_last_error(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(_expired(oauth_credential), settings=settings)
        with patch(POST_TARGET, side_effect=httpx.ConnectTimeout("slow")):
            with pytest.raises(RefreshError):
                auth.auth_header()
        assert auth.last_error is not None

        with patch(POST_TARGET, return_value=_refresh_response()):
            assert auth.auth_header() == "Bearer access-new"
        assert auth.last_error is None

    def test_force_refresh_static_requires_reauth(
        self, static_credential: StaticCredential, settings: Settings
    ) -> None:
        auth = Authenticator(static_credential, settings=settings)
        with pytest.raises(ReauthRequiredError):
            auth.force_refresh()

    def test_force_refresh_skips_when_already_replaced(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(oauth_credential, settings=settings)
        replacement = oauth_credential.model_copy(update={"access_token": "other"})

        # Simulate another thread swapping the credential between the
        # caller's observation and lock acquisition.
        real_lock = auth._lock

        class _SwappingLock:
            def __enter__(self) -> None:
                real_lock.acquire()
                auth._credential = replacement

            def __exit__(self, *args: object) -> None:
                real_lock.release()

        auth._lock = _SwappingLock()  # type: ignore[assignment]
        with patch(POST_TARGET) as mock_post:
            assert auth.force_refresh() is replacement
        mock_post.assert_not_called()

    def test_force_refresh_with_stale_credential_runs_once(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(oauth_credential, settings=settings)

        with patch(POST_TARGET, return_value=_refresh_response()) as mock_post:
            first = auth.force_refresh(stale=oauth_credential)
            # A second request rejected with the same old token arrives late.
            second = auth.force_refresh(stale=oauth_credential)

        mock_post.assert_called_once()
        assert second is first
        assert first.access_token == "access-new"


# ---------------------------------------------------------------------------
# Scope checks
# ---------------------------------------------------------------------------


class TestPermits:
    def test_granted_scope(self, oauth_credential: OAuthCredential, settings: Settings) -> None:
        auth = Authenticator(oauth_credential, settings=settings)
        assert auth.permits(["repository"])
        assert auth.permits(["pullrequest"])
        assert not auth.permits(["repository:admin"])

    def test_unknown_scopes_denied_by_default(
        self, static_credential: StaticCredential
    ) -> None:
        auth = Authenticator(static_credential, settings=load_settings({}))
        assert not auth.permits(["repository"])
        assert auth.permits([])

    def test_unknown_scopes_allowed_by_env(self, static_credential: StaticCredential) -> None:
        env = {"BITBUCKET_ALLOW_UNKNOWN_SCOPES": "1"}
        auth = Authenticator(static_credential, settings=load_settings(env))
        assert auth.permits(["repository"])


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    def test_concurrent_callers_share_one_refresh(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(_expired(oauth_credential), settings=settings)
        calls = 0
        calls_lock = threading.Lock()

        def slow_post(*args: object, **kwargs: object) -> httpx.Response:
            nonlocal calls
            with calls_lock:
                calls += 1
            time.sleep(0.1)
            return _refresh_response()

        n = 16
        barrier = threading.Barrier(n)
        headers: list[str] = []
        errors: list[BaseException] = []

        def worker() -> None:
            barrier.wait()
            try:
                headers.append(auth.auth_header())
            except BaseException as exc:  # noqa: BLE001
                errors.append(exc)

        with patch(POST_TARGET, side_effect=slow_post):
            threads = [threading.Thread(target=worker) for _ in range(n)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        assert errors == []
        assert calls == 1
        assert headers == ["Bearer access-new"] * n

    def test_concurrent_force_refresh_after_401(
        self, oauth_credential: OAuthCredential, settings: Settings
    ) -> None:
        auth = Authenticator(oauth_credential, settings=settings)
        calls = 0
        calls_lock = threading.Lock()

        def slow_post(*args: object, **kwargs: object) -> httpx.Response:
            nonlocal calls
            with calls_lock:
                calls += 1
            time.sleep(0.3)
            return _refresh_response()

        n = 8
        barrier = threading.Barrier(n)

        def worker() -> None:
            barrier.wait()
            auth.force_refresh(stale=oauth_credential)

        with patch(POST_TARGET, side_effect=slow_post):
            threads = [threading.Thread(target=worker) for _ in range(n)]
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=10)

        assert calls == 1
        assert auth.credential.access_token == "access-new"


def test_persist_failure_leaves_credential_installed_unchanged(
    oauth_credential: OAuthCredential, settings: Settings, store: CredentialStore
) -> None:
    original = _expired(oauth_credential)
    auth = Authenticator(original, store=store, settings=settings)

    with patch.object(store, "save", side_effect=OSError("disk full")):
        with patch(POST_TARGET, return_value=_refresh_response()):
            with pytest.raises(OSError):
                auth.auth_header()

    assert auth.credential is original
    assert isinstance(auth.last_error, OSError)

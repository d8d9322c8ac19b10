"""Tests for API-token login."""

from __future__ import annotations

import base64

import httpx
import pytest

from bbcloud.auth.credential_store import CredentialStore
from bbcloud.auth.login import api_token_login
from bbcloud.config import Settings
from bbcloud.exceptions import APIError, AuthError, ConnectionError_
from bbcloud.models import StaticCredential


def _transport(
    status_code: int, body: object = None, scopes: str | None = None
) -> tuple[httpx.MockTransport, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        headers = {"X-OAuth-Scopes": scopes} if scopes else {}
        if body is None:
            return httpx.Response(status_code, text="", headers=headers)
        return httpx.Response(status_code, json=body, headers=headers)

    return httpx.MockTransport(handler), seen


@pytest.fixture(autouse=True)
def _quiet(quiet_output: object, isolated_config: object) -> None:
    """Silence diagnostics and isolate the environment."""


class TestApiTokenLogin:
    def test_success_saves_credential(self, store: CredentialStore, settings: Settings) -> None:
        transport, seen = _transport(
            200, {"display_name": "Alice Example"}, scopes="read:repository:bitbucket"
        )

        result = api_token_login(
            "a@b.com", "tok123", store=store, settings=settings, transport=transport
        )

        assert result.display_name == "Alice Example"
        assert result.credential.granted_scopes == ["read:repository:bitbucket"]
        saved = store.load()
        assert isinstance(saved, StaticCredential)
        assert saved.identity == "a@b.com"
        assert saved.secret == "tok123"

        request = seen[0]
        assert request.url.path == "/2.0/user"
        expected = base64.b64encode(b"a@b.com:tok123").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    def test_nickname_fallback(self, store: CredentialStore, settings: Settings) -> None:
        transport, _ = _transport(200, {"nickname": "alice"})
        result = api_token_login(
            "a@b.com", "tok123", store=store, settings=settings, transport=transport
        )
        assert result.display_name == "alice"
        assert result.credential.granted_scopes == []

    def test_inputs_are_trimmed(self, store: CredentialStore, settings: Settings) -> None:
        transport, _ = _transport(200, {"display_name": "A"})
        result = api_token_login(
            "  a@b.com ", " tok123\n", store=store, settings=settings, transport=transport
        )
        assert result.credential.identity == "a@b.com"
        assert result.credential.secret == "tok123"

    def test_forbidden_still_logs_in(self, store: CredentialStore, settings: Settings) -> None:
        transport, _ = _transport(403, {"error": {"message": "missing scope"}})
        result = api_token_login(
            "a@b.com", "tok123", store=store, settings=settings, transport=transport
        )
        assert result.display_name is None
        assert store.exists()

    def test_unauthorized_is_rejected(self, store: CredentialStore, settings: Settings) -> None:
        transport, seen = _transport(401)
        with pytest.raises(AuthError, match="Invalid credentials"):
            api_token_login(
                "a@b.com", "wrong", store=store, settings=settings, transport=transport
            )
        assert len(seen) == 1
        assert not store.exists()

    def test_server_error_propagates(self, store: CredentialStore, settings: Settings) -> None:
        transport, _ = _transport(503)
        with pytest.raises(APIError) as exc_info:
            api_token_login(
                "a@b.com", "tok123", store=store, settings=settings, transport=transport
            )
        assert exc_info.value.status_code == 503
        assert not store.exists()

    def test_network_error(self, store: CredentialStore, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route", request=request)

        with pytest.raises(ConnectionError_):
            api_token_login(
                "a@b.com",
                "tok123",
                store=store,
                settings=settings,
                transport=httpx.MockTransport(handler),
            )

    @pytest.mark.parametrize("identity,secret", [("", "tok"), ("a@b.com", "   "), (" ", " ")])
    def test_empty_inputs(
        self, identity: str, secret: str, store: CredentialStore, settings: Settings
    ) -> None:
        transport, seen = _transport(200, {})
        with pytest.raises(AuthError):
            api_token_login(identity, secret, store=store, settings=settings, transport=transport)
        assert seen == []

    def test_without_store(self, settings: Settings) -> None:
        transport, _ = _transport(200, {"display_name": "A"})
        result = api_token_login("a@b.com", "tok123", settings=settings, transport=transport)
        assert result.credential.secret == "tok123"

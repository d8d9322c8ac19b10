"""Tests for the exception hierarchy and exit-code mapping."""

from __future__ import annotations

import pytest

from bbcloud.exceptions import (
    APIError,
    AuthError,
    AuthorizationDeniedError,
    BBCloudError,
    ConnectionError_,
    CredentialNotFoundError,
    CredentialParseError,
    ReauthRequiredError,
    RefreshError,
    TokenExchangeError,
)
from bbcloud.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


@pytest.mark.parametrize(
    "status,expected",
    [
        (401, EXIT_AUTH_FAILURE),
        (403, EXIT_AUTH_FAILURE),
        (404, EXIT_NOT_FOUND),
        (500, EXIT_SERVER_ERROR),
        (503, EXIT_SERVER_ERROR),
        (409, EXIT_GENERIC_FAILURE),
    ],
)
def test_api_error_exit_codes(status: int, expected: int) -> None:
    exc = APIError(status, "body")
    assert exc.exit_code == expected
    assert exc.status_code == status
    assert exc.body == "body"


def test_auth_errors_share_exit_code() -> None:
    for exc in (
        CredentialNotFoundError("x"),
        CredentialParseError("x"),
        ReauthRequiredError("x"),
        RefreshError(400, "x"),
        TokenExchangeError(None, ""),
        AuthorizationDeniedError("access_denied"),
    ):
        assert isinstance(exc, AuthError)
        assert exc.exit_code == EXIT_AUTH_FAILURE


def test_connection_error() -> None:
    exc = ConnectionError_("refused")
    assert isinstance(exc, BBCloudError)
    assert not isinstance(exc, ConnectionError)
    assert exc.exit_code == EXIT_CONNECTION_ERROR


def test_token_endpoint_messages() -> None:
    assert str(RefreshError(400, "invalid_grant")) == "Token refresh failed (400): invalid_grant"
    assert str(TokenExchangeError(401, "bad")) == "Token exchange failed (401): bad"
    assert RefreshError(None, "", message="network down").status_code is None


def test_authorization_denied_message() -> None:
    exc = AuthorizationDeniedError("access_denied", "User said no")
    assert str(exc) == "OAuth error: access_denied - User said no"
    assert exc.error == "access_denied"


def test_exit_code_override() -> None:
    assert BBCloudError("x", exit_code=7).exit_code == 7

"""Exception hierarchy for bbcloud.

All exceptions inherit from :class:`BBCloudError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`bbcloud.exit_codes`.
The core never terminates the process: the top-level handler in
:func:`bbcloud.app.main` catches ``BBCloudError`` and exits with the
appropriate code.

Subclass hierarchy::

    BBCloudError (exit 1)
    +-- ConfigError                 (exit 1)
    +-- AuthError                   (exit 3)
    |   +-- CredentialNotFoundError
    |   |   +-- CredentialParseError
    |   +-- CSRFStateMismatchError
    |   +-- AuthorizationDeniedError
    |   +-- FlowTimeoutError
    |   +-- TokenExchangeError
    |   +-- RefreshError
    |   +-- ReauthRequiredError
    +-- APIError                    (exit 3 / 4 / 5 / 1 depending on status)
    +-- ConnectionError_            (exit 6)
"""

from __future__ import annotations

from typing import Optional

from bbcloud.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class BBCloudError(Exception):
    """Base exception for all bbcloud errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`bbcloud.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(BBCloudError):
    """Raised for configuration problems (bad env values, unusable paths)."""

    exit_code = EXIT_GENERIC_FAILURE


class AuthError(BBCloudError):
    """Raised when authentication fails or no usable credential exists."""

    exit_code = EXIT_AUTH_FAILURE


class CredentialNotFoundError(AuthError):
    """No stored credential and no environment override.

    Recoverable by asking the user to run ``bbcloud auth login``.
    """


class CredentialParseError(CredentialNotFoundError):
    """The stored credential file exists but cannot be decoded.

    Subclasses :class:`CredentialNotFoundError` so that callers recovering
    from a missing login handle a corrupt file the same way, while
    diagnostics can still tell the two apart.
    """


class CSRFStateMismatchError(AuthError):
    """The OAuth redirect carried a ``state`` that does not match the request."""


class AuthorizationDeniedError(AuthError):
    """The OAuth provider redirected back with an ``error`` parameter.

    Args:
        error: The OAuth ``error`` code (e.g. ``access_denied``).
        description: The provider's ``error_description``, if any.
    """

    def __init__(self, error: str, description: str = "") -> None:
        message = f"OAuth error: {error}"
        if description:
            message += f" - {description}"
        super().__init__(message)
        self.error = error
        self.description = description


class FlowTimeoutError(AuthError):
    """No OAuth redirect arrived before the flow's deadline."""


class _TokenEndpointError(AuthError):
    """Shared shape for non-2xx responses from the OAuth token endpoint."""

    action = "Token request"

    def __init__(self, status_code: Optional[int], body: str, message: str | None = None) -> None:
        if message is None:
            message = f"{self.action} failed ({status_code}): {body}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenExchangeError(_TokenEndpointError):
    """The authorization code could not be exchanged for tokens."""

    action = "Token exchange"


class RefreshError(_TokenEndpointError):
    """The refresh-token grant failed.

    The previously held credential is left untouched so a later call can
    retry the refresh.
    """

    action = "Token refresh"


class ReauthRequiredError(AuthError):
    """The access token expired and cannot be refreshed.

    The only error that should prompt the user to log in again rather than
    being retried automatically.
    """


class APIError(BBCloudError):
    """A resource call returned a non-2xx status after the permitted retry.

    The exit code follows the status class: 401/403 map to an auth failure,
    404 to not-found, 5xx to a server error.

    Args:
        status_code: The HTTP status code.
        body: The raw response body, for resource-specific interpretation.
    """

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body
        if status_code in (401, 403):
            self.exit_code = EXIT_AUTH_FAILURE
        elif status_code == 404:
            self.exit_code = EXIT_NOT_FOUND
        elif status_code >= 500:
            self.exit_code = EXIT_SERVER_ERROR


class ConnectionError_(BBCloudError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """

    exit_code = EXIT_CONNECTION_ERROR

"""Shared test fixtures for bbcloud.

Provides reusable fixtures for isolated config environments, credential
builders, output state, and running CLI commands. These fixtures are
automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from bbcloud.auth.credential_store import CredentialStore
from bbcloud.config import Settings
from bbcloud.models import OAuthCredential, StaticCredential
from bbcloud.output import OutputFormat, OutputManager, reset_output, set_output


BITBUCKET_ENV_VARS = [
    "BITBUCKET_ACCESS_TOKEN",
    "BITBUCKET_USERNAME",
    "BITBUCKET_APP_PASSWORD",
    "BITBUCKET_OAUTH_CLIENT_ID",
    "BITBUCKET_OAUTH_CLIENT_SECRET",
    "BITBUCKET_API_URL",
    "BITBUCKET_AUTHORIZE_URL",
    "BITBUCKET_TOKEN_URL",
    "BITBUCKET_ALLOW_UNKNOWN_SCOPES",
]

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time.  When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale
    ("I/O operation on closed file").  Resetting forces a fresh manager
    to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path
    (and HOME to tmp_path for non-XDG platforms) so that tests never touch
    real user config. Clears all BITBUCKET_* environment variables.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    for var in BITBUCKET_ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def store(tmp_path: Path) -> CredentialStore:
    """A CredentialStore writing to a disposable directory."""
    return CredentialStore(tmp_path / "bbcloud" / "credentials.json")


@pytest.fixture
def settings() -> Settings:
    """Settings pointing every endpoint at unroutable test hosts."""
    return Settings(
        api_url="https://api.test/2.0",
        authorize_url="https://bitbucket.test/site/oauth2/authorize",
        token_url="https://bitbucket.test/site/oauth2/access_token",
    )


# ---------------------------------------------------------------------------
# Credential builders
# ---------------------------------------------------------------------------


@pytest.fixture
def static_credential() -> StaticCredential:
    return StaticCredential(identity="a@b.com", secret="tok123", created_at=T0)


@pytest.fixture
def oauth_credential() -> OAuthCredential:
    """A fresh OAuth credential with a refresh token."""
    return OAuthCredential(
        access_token="access-old",
        refresh_token="refresh-old",
        expires_in=3600,
        client_id="client-id",
        client_secret="client-secret",
        granted_scopes=["repository", "pullrequest:write"],
    )


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Set up a quiet output manager for tests that don't care about output.

    Installs a PLAIN-format, quiet OutputManager as the global output
    and resets it after the test completes.
    """
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()

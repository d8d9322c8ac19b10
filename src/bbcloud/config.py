"""Configuration management with XDG paths, atomic writes, and environment overrides.

This module handles everything bbcloud reads from its surroundings:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.bbcloud/`` on macOS and Windows. See :func:`config_base_dir`,
  :func:`get_config_dir`, :func:`get_data_dir`.
* **Settings** -- API and OAuth endpoint URLs, timeouts, the token expiry
  buffer, and the unknown-scope policy, collected into a
  :class:`Settings` model by :func:`load_settings`.
* **Environment overrides** -- credentials supplied through ``BITBUCKET_*``
  variables, which take priority over anything stored on disk. See
  :func:`load_env_overrides`.

All file writes use an atomic temp-file-then-rename strategy
(:func:`_atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import os
import platform
import tempfile
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from bbcloud.exceptions import ConfigError

_APP_NAME = "bbcloud"

DEFAULT_API_URL = "https://api.bitbucket.org/2.0"
DEFAULT_AUTHORIZE_URL = "https://bitbucket.org/site/oauth2/authorize"
DEFAULT_TOKEN_URL = "https://bitbucket.org/site/oauth2/access_token"

ENV_ACCESS_TOKEN = "BITBUCKET_ACCESS_TOKEN"
ENV_USERNAME = "BITBUCKET_USERNAME"
ENV_APP_PASSWORD = "BITBUCKET_APP_PASSWORD"
ENV_OAUTH_CLIENT_ID = "BITBUCKET_OAUTH_CLIENT_ID"
ENV_OAUTH_CLIENT_SECRET = "BITBUCKET_OAUTH_CLIENT_SECRET"
ENV_API_URL = "BITBUCKET_API_URL"
ENV_AUTHORIZE_URL = "BITBUCKET_AUTHORIZE_URL"
ENV_TOKEN_URL = "BITBUCKET_TOKEN_URL"
ENV_ALLOW_UNKNOWN_SCOPES = "BITBUCKET_ALLOW_UNKNOWN_SCOPES"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"", "0", "false", "no", "off"}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    """Fallback base directory for non-XDG platforms (macOS, Windows)."""
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def config_base_dir() -> Path:
    """Return the configuration directory path without creating it.

    On Linux/BSD: ``$XDG_CONFIG_HOME/bbcloud/`` (default ``~/.config/bbcloud/``).
    On macOS/Windows: ``~/.bbcloud/``.
    """
    if _is_xdg_platform():
        return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    return _fallback_base_dir()


def get_config_dir() -> Path:
    """Return the configuration directory, creating it owner-only if necessary.

    Returns:
        Absolute path to the configuration directory (guaranteed to exist).
    """
    path = config_base_dir()
    path.mkdir(mode=0o700, parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/bbcloud/`` (default ``~/.local/share/bbcloud/``).
    On macOS/Windows: ``~/.bbcloud/logs/``.

    Returns:
        Absolute path to the data directory (guaranteed to exist).
    """
    if _is_xdg_platform():
        base = _xdg_base("XDG_DATA_HOME", (".local", "share"))
        path = base / _APP_NAME
    else:
        path = _fallback_base_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def _atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write data to file atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is guaranteed to be an atomic rename on POSIX systems.
    When *mode* is given it is applied to the temp file before any content
    is written, so the final file never exists with looser permissions.
    On success the temp file is renamed over *path*; on any failure the temp
    file is cleaned up.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close in finally
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


class Settings(BaseModel):
    """Endpoint URLs, timeouts, and policy knobs for one process.

    Defaults target Bitbucket Cloud. Every URL can be redirected through the
    environment, which is how tests point the client at local servers.
    """

    api_url: str = Field(default=DEFAULT_API_URL, description="Base URL for all API calls")
    authorize_url: str = Field(
        default=DEFAULT_AUTHORIZE_URL, description="OAuth authorization endpoint"
    )
    token_url: str = Field(default=DEFAULT_TOKEN_URL, description="OAuth token endpoint")
    request_timeout: float = Field(default=30.0, description="Per-request HTTP timeout (seconds)")
    oauth_timeout: float = Field(
        default=300.0, description="How long to wait for the OAuth redirect (seconds)"
    )
    expiry_buffer: int = Field(
        default=300, description="Refresh tokens this many seconds before they expire"
    )
    allow_unknown_scopes: bool = Field(
        default=False,
        description="Treat credentials with unknown scopes as fully privileged",
    )


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ConfigError(f"Environment variable '{name}' must be a boolean, got '{raw}'")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from defaults layered with environment variables.

    Args:
        env: Mapping to read instead of ``os.environ``.

    Returns:
        The effective settings.

    Raises:
        ConfigError: If a variable holds a value that cannot be parsed.
    """
    env = os.environ if env is None else env
    overrides: dict[str, object] = {}
    if env.get(ENV_API_URL):
        overrides["api_url"] = env[ENV_API_URL].rstrip("/")
    if env.get(ENV_AUTHORIZE_URL):
        overrides["authorize_url"] = env[ENV_AUTHORIZE_URL]
    if env.get(ENV_TOKEN_URL):
        overrides["token_url"] = env[ENV_TOKEN_URL]
    if ENV_ALLOW_UNKNOWN_SCOPES in env:
        overrides["allow_unknown_scopes"] = _parse_bool(
            ENV_ALLOW_UNKNOWN_SCOPES, env[ENV_ALLOW_UNKNOWN_SCOPES]
        )
    return Settings(**overrides)


# --- Environment credential overrides ---


class EnvOverrides(BaseModel):
    """Credential material found in the process environment.

    Attributes:
        access_token: A ready-made bearer token (``BITBUCKET_ACCESS_TOKEN``).
        username: Account name or email for Basic auth (``BITBUCKET_USERNAME``).
        app_password: API token / app password for Basic auth
            (``BITBUCKET_APP_PASSWORD``).
        oauth_client_id: OAuth consumer key (``BITBUCKET_OAUTH_CLIENT_ID``).
        oauth_client_secret: OAuth consumer secret
            (``BITBUCKET_OAUTH_CLIENT_SECRET``).
    """

    access_token: Optional[str] = None
    username: Optional[str] = None
    app_password: Optional[str] = None
    oauth_client_id: Optional[str] = None
    oauth_client_secret: Optional[str] = None

    @property
    def has_bearer(self) -> bool:
        return bool(self.access_token)

    @property
    def has_basic(self) -> bool:
        return bool(self.username and self.app_password)

    @property
    def has_oauth_client(self) -> bool:
        return bool(self.oauth_client_id and self.oauth_client_secret)


def load_env_overrides(env: Optional[Mapping[str, str]] = None) -> EnvOverrides:
    """Read credential overrides from the environment.

    Empty variables are treated as unset.

    Args:
        env: Mapping to read instead of ``os.environ``.
    """
    env = os.environ if env is None else env

    def _get(name: str) -> Optional[str]:
        value = env.get(name, "").strip()
        return value or None

    return EnvOverrides(
        access_token=_get(ENV_ACCESS_TOKEN),
        username=_get(ENV_USERNAME),
        app_password=_get(ENV_APP_PASSWORD),
        oauth_client_id=_get(ENV_OAUTH_CLIENT_ID),
        oauth_client_secret=_get(ENV_OAUTH_CLIENT_SECRET),
    )

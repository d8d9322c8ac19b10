"""Build an :class:`~bbcloud.auth.authenticator.Authenticator` for this process.

Credential sources are tried in order and the first match wins:

1. ``BITBUCKET_ACCESS_TOKEN`` -- a bare bearer token.
2. ``BITBUCKET_USERNAME`` + ``BITBUCKET_APP_PASSWORD`` -- HTTP Basic.
3. The stored credential file written by ``bbcloud auth login``.

Environment credentials are never written to disk, so the store is attached
to the authenticator only when the credential came from the file.
"""

from __future__ import annotations

from typing import Mapping, NamedTuple, Optional

from bbcloud.auth.authenticator import Authenticator
from bbcloud.auth.credential_store import CredentialStore
from bbcloud.config import (
    ENV_ACCESS_TOKEN,
    ENV_APP_PASSWORD,
    ENV_USERNAME,
    Settings,
    load_env_overrides,
    load_settings,
)
from bbcloud.exceptions import CredentialNotFoundError, CredentialParseError
from bbcloud.models import Credential, StaticCredential

SOURCE_ENV = "environment"
SOURCE_FILE = "file"


class ResolvedCredential(NamedTuple):
    """A credential plus where it was found (``environment`` or ``file``)."""

    credential: Credential
    source: str


def resolve_credential(
    store: Optional[CredentialStore] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ResolvedCredential:
    """Find the credential to use, honouring environment precedence.

    Args:
        store: Credential file to fall back to; defaults to the user's store.
        env: Mapping to read instead of ``os.environ``.

    Raises:
        CredentialNotFoundError: If no source provides a credential.
        CredentialParseError: If the stored file exists but is corrupt.
    """
    overrides = load_env_overrides(env)
    if overrides.has_bearer:
        return ResolvedCredential(StaticCredential(secret=overrides.access_token), SOURCE_ENV)
    if overrides.has_basic:
        return ResolvedCredential(
            StaticCredential(identity=overrides.username, secret=overrides.app_password),
            SOURCE_ENV,
        )

    store = store or CredentialStore()
    try:
        return ResolvedCredential(store.load(), SOURCE_FILE)
    except CredentialParseError:
        raise
    except CredentialNotFoundError as exc:
        raise CredentialNotFoundError(
            "No Bitbucket credentials found. Run 'bbcloud auth login', or set "
            f"{ENV_ACCESS_TOKEN}, or {ENV_USERNAME} and {ENV_APP_PASSWORD}."
        ) from exc


def build_authenticator(
    store: Optional[CredentialStore] = None,
    env: Optional[Mapping[str, str]] = None,
    settings: Optional[Settings] = None,
) -> Authenticator:
    """Return an :class:`Authenticator` for the first available credential.

    Args:
        store: Credential file to fall back to; defaults to the user's store.
        env: Mapping to read instead of ``os.environ``.
        settings: Defaults to :func:`~bbcloud.config.load_settings` over *env*.

    Raises:
        CredentialNotFoundError: If no source provides a credential.
    """
    store = store or CredentialStore()
    resolved = resolve_credential(store, env)
    return Authenticator(
        resolved.credential,
        store=store if resolved.source == SOURCE_FILE else None,
        settings=settings or load_settings(env),
    )

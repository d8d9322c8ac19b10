"""Persistent, per-user credential store.

Stores the single active credential in
``~/.config/bbcloud/credentials.json`` (XDG) or the platform-equivalent
directory. The directory is created with ``0o700`` and the file is written
atomically via :func:`~bbcloud.config._atomic_write` with ``0o600``
permissions, so secrets are never group- or world-readable, even
momentarily, and a crash mid-write leaves the previous file intact.

The file holds a JSON-serialised :data:`~bbcloud.models.Credential`. Its
``scheme`` field selects between the static and OAuth variants on load.

See Also:
    :class:`~bbcloud.auth.oauth_flow.OAuthFlow` -- writes OAuth credentials.
    :class:`~bbcloud.auth.authenticator.Authenticator` -- re-saves after refresh.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from bbcloud.config import _atomic_write, config_base_dir
from bbcloud.exceptions import CredentialNotFoundError, CredentialParseError
from bbcloud.models import Credential, credential_adapter

CREDENTIALS_FILENAME = "credentials.json"


class CredentialStore:
    """Read/write the locally stored credential.

    Args:
        path: Override the file location. Defaults to
            ``<config_base_dir()>/credentials.json``; computing the default
            has no side effects.

    Example::

        store = CredentialStore()
        store.save(StaticCredential(identity="a@b.com", secret="tok123"))
        cred = store.load()
        assert cred.secret == "tok123"
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        # Only the default directory belongs to bbcloud; a caller-chosen
        # parent keeps its existing mode.
        self._owns_dir = path is None
        self._path = path if path is not None else config_base_dir() / CREDENTIALS_FILENAME

    @property
    def path(self) -> Path:
        """The filesystem path to the credential file."""
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def save(self, credential: Credential) -> None:
        """Persist *credential* atomically with ``0o600`` permissions.

        Creates the parent directory (``0o700``) if it is absent. An existing
        default directory is tightened to ``0o700``; an existing directory
        passed in through *path* is left as it is.

        Args:
            credential: Either credential variant.

        Raises:
            OSError: If the file cannot be written (permissions, disk full, etc.).
        """
        data = credential_adapter.dump_python(credential, mode="json")
        text = json.dumps(data, indent=2) + "\n"

        parent = self._path.parent
        if not parent.exists():
            parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(parent, 0o700)
        elif self._owns_dir:
            os.chmod(parent, 0o700)
        _atomic_write(self._path, text, mode=0o600)

    def load(self) -> Credential:
        """Load the stored credential from disk.

        Returns:
            The deserialised credential variant.

        Raises:
            CredentialNotFoundError: If no credential file exists.
            CredentialParseError: If the file cannot be read or decoded.
        """
        if not self._path.is_file():
            raise CredentialNotFoundError(f"No stored credentials at {self._path}")
        try:
            text = self._path.read_text(encoding="utf-8")
            return credential_adapter.validate_json(text)
        except ValidationError as exc:
            raise CredentialParseError(
                f"Stored credentials at {self._path} are invalid: "
                f"{exc.error_count()} validation error(s)"
            ) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise CredentialParseError(
                f"Cannot read stored credentials at {self._path}: {exc}"
            ) from exc

    def remove(self) -> None:
        """Delete the stored credential file.

        A no-op when the file does not exist.

        Raises:
            OSError: If the file exists but cannot be removed.
        """
        try:
            self._path.unlink()
        except FileNotFoundError:
            pass

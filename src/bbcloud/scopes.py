"""Token scope parsing and permission checks.

Bitbucket reports the scopes of the credential used for a request in the
``X-OAuth-Scopes`` response header, and the OAuth token endpoint reports
them in the token response. Two vocabularies are in use:

* OAuth consumer scopes such as ``repository``, ``repository:write`` or
  ``pullrequest:write``.
* Atlassian API-token scopes of the form ``{action}:{resource}:bitbucket``,
  e.g. ``read:repository:bitbucket`` or ``admin:repository:bitbucket``.

:func:`implied_scopes` maps either form onto the OAuth vocabulary and adds
the scopes implied by the access level (``admin`` implies ``write`` implies
read), so that :func:`has_required_scope` can compare them directly.

Credentials whose scopes are unknown (for example app passwords, or a
verification call that did not return the header) are denied by default.
Callers that want the permissive behaviour must opt in with
``allow_unknown=True``.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

SCOPES_HEADER = "X-OAuth-Scopes"

_SPLIT_RE = re.compile(r"[\s,]+")

# Access levels in increasing order of privilege. ``delete`` is separate:
# it does not imply write access and is not implied by admin.
_LEVELS = ("", "write", "admin")
_API_TOKEN_ACTIONS = {"read": "", "write": "write", "admin": "admin", "delete": "delete"}


def parse_scopes(raw: Optional[str]) -> list[str]:
    """Split a scope string on commas and/or whitespace.

    Duplicates are dropped while preserving the original order.

    Example::

        parse_scopes("repository pullrequest:write, repository")
        # ['repository', 'pullrequest:write']
    """
    if not raw:
        return []
    seen: dict[str, None] = {}
    for part in _SPLIT_RE.split(raw.strip()):
        if part:
            seen.setdefault(part, None)
    return list(seen)


def _normalise(scope: str) -> tuple[str, str]:
    """Return ``(resource, level)`` for either scope vocabulary."""
    parts = scope.split(":")
    if len(parts) == 3 and parts[2] == "bitbucket" and parts[0] in _API_TOKEN_ACTIONS:
        return parts[1], _API_TOKEN_ACTIONS[parts[0]]
    # Atlassian account scopes: read:account, read:user
    if len(parts) == 2 and parts[0] in _API_TOKEN_ACTIONS:
        return parts[1], _API_TOKEN_ACTIONS[parts[0]]
    if len(parts) == 2:
        return parts[0], parts[1]
    return scope, ""


def implied_scopes(scope: str) -> set[str]:
    """Return *scope* in OAuth form plus every scope it implies.

    Example::

        implied_scopes("admin:repository:bitbucket")
        # {'repository', 'repository:write', 'repository:admin'}
    """
    resource, level = _normalise(scope)
    if level not in _LEVELS:
        return {f"{resource}:{level}"}
    granted = set()
    for implied in _LEVELS[: _LEVELS.index(level) + 1]:
        granted.add(f"{resource}:{implied}" if implied else resource)
    return granted


def has_required_scope(
    granted: Iterable[str],
    required: Iterable[str],
    allow_unknown: bool = False,
) -> bool:
    """Check whether *granted* satisfies any scope in *required*.

    Args:
        granted: Scopes held by the credential, in either vocabulary.
        required: Alternative scopes, any one of which is sufficient. An
            empty collection means no scope is needed.
        allow_unknown: Result to return when *granted* is empty, i.e. the
            credential's scopes could not be determined.

    Returns:
        ``True`` if the operation is permitted.
    """
    required = list(required)
    if not required:
        return True
    granted = list(granted)
    if not granted:
        return allow_unknown

    held: set[str] = set()
    for scope in granted:
        held |= implied_scopes(scope)
    for scope in required:
        resource, level = _normalise(scope)
        wanted = f"{resource}:{level}" if level else resource
        if wanted in held:
            return True
    return False

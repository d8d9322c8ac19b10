"""Credential and token lifecycle for Bitbucket Cloud.

The main entry points are:

- :class:`CredentialStore` -- persistent, per-user credential storage on disk.
- :class:`Authenticator` -- thread-safe owner of the active credential that
  produces ``Authorization`` headers and refreshes OAuth tokens.
- :class:`OAuthFlow` -- interactive authorization-code login through the
  browser and a loopback callback listener.
- :func:`api_token_login` -- verifies and stores an API token.

Typical usage::

    from bbcloud.auth import Authenticator, CredentialStore

    store = CredentialStore()
    authenticator = Authenticator(store.load(), store=store)
    header = authenticator.auth_header()
"""

from bbcloud.auth.authenticator import Authenticator
from bbcloud.auth.credential_store import CredentialStore
from bbcloud.auth.oauth_flow import FlowState, OAuthFlow
from bbcloud.auth.login import LoginResult, api_token_login

__all__ = [
    "Authenticator",
    "CredentialStore",
    "FlowState",
    "LoginResult",
    "OAuthFlow",
    "api_token_login",
]

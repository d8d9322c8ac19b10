"""Auth commands -- log in, inspect, and log out.

Provides the ``bbcloud auth`` sub-command group. Two login paths are
supported:

* **API token** (default) -- prompts for an Atlassian account email and API
  token, verifies them against ``GET /user`` and stores them for HTTP Basic
  auth.
* **OAuth 2.0** (``--oauth``) -- runs the authorization-code flow in the
  browser using the consumer from ``BITBUCKET_OAUTH_CLIENT_ID`` and
  ``BITBUCKET_OAUTH_CLIENT_SECRET``. Access tokens are refreshed
  automatically.

Typical workflow::

    bbcloud auth login           # API token
    bbcloud auth login --oauth   # browser-based OAuth
    bbcloud auth status
    bbcloud auth logout
"""

from __future__ import annotations

from typing import Optional

import typer

from bbcloud.exceptions import BBCloudError
from bbcloud.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INVALID_USAGE
from bbcloud.output import error, format_response, info, success, suggest, warning


auth_app = typer.Typer(no_args_is_help=True)


def _redact(secret: str) -> str:
    """Show only the first and last four characters of *secret*."""
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}...{secret[-4:]}"


@auth_app.command("login")
def auth_login(
    oauth: bool = typer.Option(
        False, "--oauth", help="Log in with OAuth 2.0 in the browser."
    ),
    email: Optional[str] = typer.Option(
        None, "--email", "-e", help="Atlassian account email (API token login)."
    ),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the OAuth URL instead of opening a browser."
    ),
) -> None:
    """Log in to Bitbucket Cloud and store the credential.

    Without ``--oauth`` the command prompts for an email and an API token
    (input hidden). Create API tokens at
    https://id.atlassian.com/manage-profile/security/api-tokens.

    Raises:
        typer.Exit: With code 2 if OAuth client variables are missing, or
            the error's exit code if login fails.

    Example::

        bbcloud auth login --email a@b.com
        bbcloud auth login --oauth
    """
    from bbcloud.auth import CredentialStore, OAuthFlow, api_token_login
    from bbcloud.config import (
        ENV_OAUTH_CLIENT_ID,
        ENV_OAUTH_CLIENT_SECRET,
        load_env_overrides,
        load_settings,
    )

    store = CredentialStore()
    try:
        settings = load_settings()
        if oauth:
            overrides = load_env_overrides()
            if not overrides.has_oauth_client:
                error(
                    f"OAuth login needs {ENV_OAUTH_CLIENT_ID} and "
                    f"{ENV_OAUTH_CLIENT_SECRET} to be set."
                )
                suggest(
                    "Create an OAuth consumer under Workspace settings > OAuth consumers, "
                    "with callback URL http://127.0.0.1/callback"
                )
                raise typer.Exit(code=EXIT_INVALID_USAGE)
            flow = OAuthFlow(
                overrides.oauth_client_id,
                overrides.oauth_client_secret,
                store=store,
                settings=settings,
                open_browser=not no_browser,
            )
            credential = flow.run()
            success("Logged in with OAuth 2.0.")
            if credential.granted_scopes:
                info(f"Scopes: {', '.join(credential.granted_scopes)}")
        else:
            if email is None:
                email = typer.prompt("Email")
            token = typer.prompt("API token", hide_input=True)
            result = api_token_login(email, token, store=store, settings=settings)
            who = result.display_name or result.credential.identity
            success(f"Logged in as {who}.")
    except BBCloudError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    info(f"Credentials saved to {store.path}")
    suggest("Check it: bbcloud auth status")


@auth_app.command("status")
def auth_status() -> None:
    """Show which credential is in use and whether it is still valid.

    Secrets are redacted to their first and last four characters.

    Raises:
        typer.Exit: With the auth exit code if no credential is available.

    Example::

        bbcloud auth status
    """
    from bbcloud.auth import CredentialStore
    from bbcloud.bootstrap import SOURCE_ENV, resolve_credential
    from bbcloud.config import load_settings
    from bbcloud.models import OAuthCredential

    store = CredentialStore()
    try:
        settings = load_settings()
        resolved = resolve_credential(store)
    except BBCloudError as exc:
        error(str(exc))
        suggest("Log in: bbcloud auth login")
        raise typer.Exit(code=exc.exit_code) from None

    credential = resolved.credential
    record: dict[str, object] = {
        "source": resolved.source,
        "scheme": credential.scheme,
    }
    if isinstance(credential, OAuthCredential):
        record["token"] = _redact(credential.access_token)
        if credential.is_expired(buffer_seconds=settings.expiry_buffer):
            record["status"] = (
                "expired (will refresh automatically)"
                if credential.is_refreshable
                else "expired (run 'bbcloud auth login')"
            )
        else:
            record["status"] = "valid"
        record["expires_at"] = credential.expires_at.isoformat(timespec="seconds")
    else:
        record["identity"] = credential.identity or "-"
        record["token"] = _redact(credential.secret)
        record["status"] = "valid"
    record["scopes"] = credential.granted_scopes or ["unknown"]
    if resolved.source == SOURCE_ENV:
        record["path"] = "-"
    else:
        record["stored_at"] = credential.created_at.isoformat(timespec="seconds")
        record["path"] = str(store.path)

    format_response(record)


@auth_app.command("logout")
def auth_logout() -> None:
    """Remove the stored credential.

    Succeeds even if nothing is stored. Credentials supplied through the
    environment are unaffected and still take priority.

    Example::

        bbcloud auth logout
    """
    from bbcloud.auth import CredentialStore
    from bbcloud.config import load_env_overrides

    store = CredentialStore()
    existed = store.exists()
    try:
        store.remove()
    except OSError as exc:
        error(f"Cannot remove {store.path}: {exc}")
        raise typer.Exit(code=EXIT_GENERIC_FAILURE) from None

    if existed:
        success("Logged out. Stored credentials removed.")
    else:
        info("No stored credentials to remove.")

    overrides = load_env_overrides()
    if overrides.has_bearer or overrides.has_basic:
        warning("Credentials from BITBUCKET_* environment variables are still in effect.")

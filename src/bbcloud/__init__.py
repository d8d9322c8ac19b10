"""bbcloud -- authenticated access to the Bitbucket Cloud REST API.

This package owns the credential and token lifecycle for Bitbucket Cloud
and the authenticated HTTP pipeline that resource operations are built on.
Two credential schemes are supported: Atlassian API tokens (HTTP Basic) and
OAuth 2.0 bearer tokens with automatic refresh.

Typical workflow::

    bbcloud auth login            # API token (Basic auth)
    bbcloud auth login --oauth    # OAuth 2.0 via the browser
    bbcloud auth status

Programmatic use::

    from bbcloud.bootstrap import build_authenticator
    from bbcloud.client import RequestExecutor

    with RequestExecutor(build_authenticator()) as executor:
        repos = executor.get_json("/repositories/my-workspace")

Modules:
    app: Typer application and CLI entry point.
    models: Credential models (static and OAuth variants).
    config: XDG paths, settings, and environment overrides.
    bootstrap: Builds an Authenticator from env vars or stored credentials.
    scopes: Token scope parsing and permission checks.
    exceptions: Exception hierarchy with exit-code mapping.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"

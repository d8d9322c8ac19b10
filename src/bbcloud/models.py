"""Canonical Pydantic models for credentials and token responses.

A stored credential is one of two variants, selected by its ``scheme``
discriminator:

* :class:`StaticCredential` -- an Atlassian API token (sent as HTTP Basic
  auth) or a bare access token supplied through the environment (sent as a
  bearer token). Static secrets never expire client-side.
* :class:`OAuthCredential` -- an OAuth 2.0 access/refresh token pair plus
  the consumer key and secret needed to talk to the token endpoint again.

:data:`Credential` is the tagged union of the two and
:data:`credential_adapter` validates or serialises either variant. Both
models are frozen: a refresh produces a new instance instead of mutating the
old one, so a reader always sees a complete credential.

:class:`TokenResponse` is the parsed body of a successful token endpoint
call, shared by the authorization-code exchange and the refresh grant.
"""

from __future__ import annotations

import base64
import enum
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from bbcloud.scopes import parse_scopes

DEFAULT_EXPIRY_BUFFER = 300
"""Seconds before nominal expiry at which an OAuth token counts as expired."""


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class CredentialScheme(str, enum.Enum):
    """How a credential authenticates outgoing requests."""

    STATIC = "static"
    OAUTH = "oauth"


class _CredentialBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    created_at: datetime = Field(
        default_factory=utcnow,
        description="When the credential was issued or last refreshed (UTC)",
    )
    granted_scopes: list[str] = Field(
        default_factory=list,
        description="Scopes granted to the credential; empty when unknown",
    )

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # Naive timestamps written by older tools are treated as UTC.
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class StaticCredential(_CredentialBase):
    """A long-lived secret that is sent unchanged with every request.

    With an ``identity`` the secret is an API token and the pair is sent as
    ``Authorization: Basic base64(identity:secret)``. Without one the secret
    is a bare access token and is sent as ``Authorization: Bearer <secret>``.

    Example::

        cred = StaticCredential(identity="a@b.com", secret="tok123")
        cred.authorization_header()  # 'Basic YUBiLmNvbTp0b2sxMjM='
    """

    scheme: Literal["static"] = CredentialScheme.STATIC.value
    identity: Optional[str] = Field(default=None, description="Account email or username")
    secret: str = Field(description="API token, app password, or bare access token")

    @property
    def is_refreshable(self) -> bool:
        return False

    def is_expired(
        self,
        now: Optional[datetime] = None,
        buffer_seconds: int = DEFAULT_EXPIRY_BUFFER,
    ) -> bool:
        """Static secrets never expire client-side."""
        return False

    def authorization_header(self) -> str:
        if self.identity:
            raw = f"{self.identity}:{self.secret}"
            return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")
        return f"Bearer {self.secret}"


class OAuthCredential(_CredentialBase):
    """An OAuth 2.0 token pair obtained through the authorization-code grant.

    ``expires_in`` is relative to ``created_at``. A value of ``0`` means the
    token is already expired, not that it never expires.

    Attributes:
        access_token: The bearer token attached to API requests.
        refresh_token: Used to obtain a new access token. ``None`` for
            grants that cannot be refreshed; such credentials require a new
            login once they expire.
        token_type: Token type reported by the provider, usually ``bearer``.
        expires_in: Lifetime of the access token in seconds.
        client_id: OAuth consumer key, needed for the refresh grant.
        client_secret: OAuth consumer secret, needed for the refresh grant.
    """

    scheme: Literal["oauth"] = CredentialScheme.OAUTH.value
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int = Field(ge=0)
    client_id: str = ""
    client_secret: str = ""

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.expires_in)

    @property
    def is_refreshable(self) -> bool:
        return bool(self.refresh_token)

    def is_expired(
        self,
        now: Optional[datetime] = None,
        buffer_seconds: int = DEFAULT_EXPIRY_BUFFER,
    ) -> bool:
        """Return ``True`` once *now* is within *buffer_seconds* of expiry.

        Args:
            now: The moment to evaluate; defaults to the current UTC time.
            buffer_seconds: Safety margin subtracted from the lifetime so
                that a token is refreshed before in-flight requests can
                observe it expiring.
        """
        if now is None:
            now = utcnow()
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now >= self.expires_at - timedelta(seconds=buffer_seconds)

    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"


Credential = Annotated[Union[StaticCredential, OAuthCredential], Field(discriminator="scheme")]
"""Either credential variant, discriminated by ``scheme``."""

credential_adapter: TypeAdapter[Credential] = TypeAdapter(Credential)


class TokenResponse(BaseModel):
    """Successful body of an OAuth token endpoint call.

    Bitbucket reports granted scopes in a non-standard ``scopes`` field;
    :rfc:`6749` uses ``scope``. Either is accepted and normalised to a list.
    A missing ``expires_in`` defaults to one hour.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: int = Field(default=3600, ge=0)
    scopes: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _normalise_scopes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw = data.pop("scopes", None)
        if raw is None:
            raw = data.pop("scope", None)
        else:
            data.pop("scope", None)
        if isinstance(raw, str):
            data["scopes"] = parse_scopes(raw)
        elif isinstance(raw, list):
            data["scopes"] = [str(s) for s in raw]
        if data.get("refresh_token") == "":
            data["refresh_token"] = None
        return data

    def to_credential(
        self,
        client_id: str,
        client_secret: str,
        now: Optional[datetime] = None,
        previous_refresh_token: Optional[str] = None,
        previous_scopes: Optional[list[str]] = None,
    ) -> OAuthCredential:
        """Build an :class:`OAuthCredential` issued at *now*.

        Args:
            client_id: OAuth consumer key to store alongside the tokens.
            client_secret: OAuth consumer secret to store alongside the tokens.
            now: Issuance time; defaults to the current UTC time.
            previous_refresh_token: Kept when the response does not rotate
                the refresh token.
            previous_scopes: Kept when the response does not report scopes.
        """
        return OAuthCredential(
            created_at=now or utcnow(),
            access_token=self.access_token,
            refresh_token=self.refresh_token or previous_refresh_token,
            token_type=self.token_type,
            expires_in=self.expires_in,
            granted_scopes=self.scopes or list(previous_scopes or []),
            client_id=client_id,
            client_secret=client_secret,
        )

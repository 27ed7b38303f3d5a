"""Token request, response and session models for OAuth 2.1.

Request models render the form bodies sent to the token endpoint; the
response model validates what comes back; ``TokenSet`` is the credential set
the rest of the service works with.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


@dataclass(frozen=True)
class TokenSet:
    """Credentials issued by a successful exchange or refresh.

    ``expires_in_seconds`` is always the provider's value; the access token
    lifetime is never assumed.
    """

    access_token: str = field(repr=False)
    expires_in_seconds: int
    refresh_token: str | None = field(default=None, repr=False)
    scope: str = ""

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ValueError("access_token must not be empty")
        if self.expires_in_seconds <= 0:
            raise ValueError("expires_in_seconds must be positive")

    def expires_at(self, now: float | None = None) -> float:
        """Absolute expiry timestamp of the access token."""
        return (time.time() if now is None else now) + self.expires_in_seconds

    def with_retained_refresh_token(self, previous: str | None) -> TokenSet:
        """Keep the previous refresh token when the provider did not rotate it."""
        if self.refresh_token or not previous:
            return self
        return replace(self, refresh_token=previous)


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code grant request (RFC 6749 Section 4.1.3).

    Includes the PKCE code_verifier (RFC 7636). The ``redirect_uri`` must be
    byte-for-byte the one used in the authorization request.
    """

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    client_secret: str = field(repr=False)
    code_verifier: str = field(repr=False)

    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Token requests must use form encoding, not JSON (RFC 6749 Section 4.1.3).
        """
        return {
            "grant_type": self.grant_type,
            "code": self.code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            "code_verifier": self.code_verifier,
        }


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token grant request (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str = field(repr=False)
    client_id: str
    client_secret: str = field(repr=False)

    grant_type: str = "refresh_token"

    def to_form_data(self) -> dict[str, str]:
        return {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }


class TokenResponse(BaseModel):
    """Successful token endpoint response (RFC 6749 Section 5.1)."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(min_length=1)
    token_type: str = "Bearer"
    expires_in: PositiveInt
    refresh_token: str | None = None
    scope: str = ""

    def to_token_set(self) -> TokenSet:
        return TokenSet(
            access_token=self.access_token,
            expires_in_seconds=self.expires_in,
            refresh_token=self.refresh_token or None,
            scope=self.scope or "",
        )


class TokenErrorResponse(BaseModel):
    """Token endpoint error body (RFC 6749 Section 5.2)."""

    model_config = ConfigDict(extra="ignore")

    error: str = "unknown_error"
    error_description: str | None = None
    error_uri: str | None = None

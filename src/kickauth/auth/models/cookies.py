"""Cookie schema for session-bound credentials.

Cookie names are a contract with the browser and must stay stable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

FLOW_TTL_SECONDS = 10 * 60
REFRESH_TOKEN_TTL_SECONDS = 30 * 24 * 60 * 60


class CookieName(str, Enum):
    PKCE_VERIFIER = "pkce_verifier"
    OAUTH_STATE = "oauth_state"
    ACCESS_TOKEN = "access_token"
    REFRESH_TOKEN = "refresh_token"


FLOW_COOKIES = (CookieName.PKCE_VERIFIER, CookieName.OAUTH_STATE)
CREDENTIAL_COOKIES = (CookieName.ACCESS_TOKEN, CookieName.REFRESH_TOKEN)
ALL_COOKIES = FLOW_COOKIES + CREDENTIAL_COOKIES


@dataclass(frozen=True)
class CookieAttributes:
    """Attributes applied to every credential cookie."""

    secure: bool
    httponly: bool = True
    samesite: str = "lax"
    path: str = "/"


@dataclass(frozen=True)
class IssuedCookie:
    """A signed cookie ready to be set on a response."""

    name: CookieName
    value: str = field(repr=False)
    max_age: int
    attributes: CookieAttributes


@dataclass(frozen=True)
class SignedPayload:
    """A verified cookie value together with its signed expiry."""

    value: object
    expires_at: int

"""Authorization flow models for OAuth 2.1.

Contains the authorization redirect request, the parsed callback, and the
flow state machine vocabulary.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode


class FlowState(str, Enum):
    """Outcomes reported by the login/callback state machine.

    Redirected and CallbackReceived are transient within a single request
    and never reported.
    """

    IDLE = "idle"
    FLOW_STARTED = "flow_started"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"

    # Terminal failures
    FLOW_EXPIRED = "flow_expired"
    CSRF_REJECTED = "csrf_rejected"
    PROVIDER_DENIED = "provider_denied"
    INVALID_CALLBACK = "invalid_callback"
    EXCHANGE_FAILED = "exchange_failed"


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for OAuth 2.1 flow."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...]
    code_challenge: str
    state: str

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL.

        ``response_type`` and ``code_challenge_method`` are fixed. Scopes are
        joined with a single space before encoding.
        """
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "code_challenge": self.code_challenge,
            "code_challenge_method": "S256",
            "state": self.state,
        }

        separator = "&" if "?" in self.authorization_endpoint else "?"
        return f"{self.authorization_endpoint}{separator}{urlencode(params)}"


def build_authorization_url(
    authorize_endpoint: str,
    client_id: str,
    redirect_uri: str,
    scopes: Sequence[str],
    code_challenge: str,
    state: str,
) -> str:
    return AuthorizationRequest(
        authorization_endpoint=authorize_endpoint,
        client_id=client_id,
        redirect_uri=redirect_uri,
        scopes=tuple(scopes),
        code_challenge=code_challenge,
        state=state,
    ).build_authorization_url()


@dataclass(frozen=True)
class AuthorizationResponse:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> AuthorizationResponse:
        """Read callback parameters, treating blank values as absent."""

        def get_single_param(key: str) -> str | None:
            value = query.get(key)
            if value is None:
                return None
            value = value.strip()
            return value or None

        return cls(
            code=get_single_param("code"),
            state=get_single_param("state"),
            error=get_single_param("error"),
            error_description=get_single_param("error_description"),
        )

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None

"""Exception hierarchy for the cookie-backed OAuth 2.1 flow.

Each exception type maps to one failure mode of the login, callback, refresh
and gating phases, and carries the HTTP status and the user-facing message
the server layer renders. Provider diagnostics are kept on the exception but
are only exposed outside production.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.1 related errors."""

    status_code: int = 500
    error_code: str = "oauth_error"
    public_message: str = "Authentication failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)

    @property
    def detail(self) -> str:
        """Diagnostic detail for non-production responses."""
        return str(self)


class InvalidSignatureError(OAuth2Error):
    """Raised when a signed cookie fails verification.

    Wrong secret, truncation, tampering and expiry all raise this same error
    with the same message so callers cannot tell the cases apart.
    """

    status_code = 400
    error_code = "invalid_signature"
    public_message = "Invalid signed value."

    def __init__(self):
        super().__init__("Invalid signed value")


class FlowValidationError(OAuth2Error):
    """Base for callback validation failures resolved locally with a 4xx."""

    status_code = 400


class MissingParameterError(FlowValidationError):
    """Raised when a required callback query parameter is absent."""

    error_code = "missing_parameter"
    public_message = "The authorization callback is missing required parameters."

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required parameters: {', '.join(self.missing)}")


class FlowExpiredError(FlowValidationError):
    """Raised when the verifier or state cookie is missing or invalid.

    The login flow has expired or its cookies were tampered with; the user
    has to start the login again.
    """

    error_code = "flow_expired"
    public_message = "Your login attempt expired. Please sign in again."


class CsrfRejectedError(FlowValidationError):
    """Raised when the callback state does not match the stored state."""

    error_code = "csrf_rejected"
    public_message = "The login response could not be verified. Please sign in again."


class ProviderDeniedError(FlowValidationError):
    """Raised when the provider redirected back with an ``error`` parameter."""

    error_code = "provider_denied"

    def __init__(self, error: str, error_description: str | None = None):
        self.error = error
        self.error_description = error_description
        super().__init__(
            f"Authorization denied: {error}"
            + (f" ({error_description})" if error_description else "")
        )

    @property
    def public_message(self) -> str:  # type: ignore[override]
        if self.error_description:
            return f"Authorization denied: {self.error} - {self.error_description}"
        return f"Authorization denied: {self.error}"


class TokenEndpointError(OAuth2Error):
    """Base for failures reported by, or while reaching, the token endpoint."""

    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        provider_error: str | None = None,
        provider_description: str | None = None,
        http_status: int | None = None,
    ):
        self.retryable = retryable
        self.provider_error = provider_error
        self.provider_description = provider_description
        self.http_status = http_status
        super().__init__(message)


class ExchangeError(TokenEndpointError):
    """Raised when the authorization code to token exchange fails.

    ``retryable`` is True for network errors, timeouts and provider 5xx
    responses. Nothing retries automatically; the user restarts the login.
    """

    status_code = 502
    error_code = "exchange_failed"
    public_message = (
        "Could not obtain an access token. Check the client configuration "
        "and sign in again."
    )


class RefreshError(TokenEndpointError):
    """Raised when a refresh token grant fails.

    Every refresh failure tears down the session; ``invalid_grant`` marks the
    case where the provider rejected the refresh token itself.
    """

    status_code = 401
    error_code = "refresh_failed"
    public_message = "Your session could not be refreshed. Please sign in again."

    @property
    def invalid_grant(self) -> bool:
        return self.provider_error in INVALID_GRANT_ERRORS


class UnauthenticatedError(OAuth2Error):
    """Raised when a gated operation has no valid credential cookie."""

    status_code = 401
    error_code = "unauthenticated"
    public_message = "Not signed in. Please sign in again."


# Provider error codes meaning the refresh token is no longer usable
INVALID_GRANT_ERRORS = frozenset({"invalid_grant", "invalid_token", "unauthorized_client"})

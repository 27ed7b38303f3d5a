"""OAuth 2.1 token endpoint client.

Implements the authorization_code (RFC 6749 Section 4.1.3, with the PKCE
verifier of RFC 7636) and refresh_token (RFC 6749 Section 6) grants against
the provider's token endpoint. Requests are never retried: an authorization
code is single-use, and a replayed request could consume it twice.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from kickauth.auth.models.errors import ExchangeError, RefreshError, TokenEndpointError
from kickauth.auth.models.tokens import (
    RefreshTokenRequest,
    TokenErrorResponse,
    TokenRequest,
    TokenResponse,
    TokenSet,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class TokenExchangeClient:
    """Performs the two token endpoint calls for a confidential client.

    Handles:
    - Authorization code to token exchange, including the PKCE verifier
    - Refresh token grants
    - Translation of provider and network failures into ``ExchangeError``
      and ``RefreshError``

    The HTTP client is injected so tests can substitute a fake token endpoint.
    When none is given the client owns one with a hard timeout.
    """

    def __init__(
        self,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.token_endpoint = token_endpoint
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code(self, code: str, code_verifier: str) -> TokenSet:
        """Exchange an authorization code for tokens.

        Raises:
            ExchangeError: ``retryable=False`` for provider 4xx responses
                (invalid, expired or already-used code) and malformed
                responses; ``retryable=True`` for timeouts, network errors
                and provider 5xx responses
        """
        token_request = TokenRequest(
            token_endpoint=self.token_endpoint,
            code=code,
            redirect_uri=self.redirect_uri,
            client_id=self.client_id,
            client_secret=self._client_secret,
            code_verifier=code_verifier,
        )

        logger.debug(
            f"Exchanging authorization code at {self.token_endpoint} "
            f"for client_id={self.client_id}"
        )

        token_set = await self._request(token_request.to_form_data(), ExchangeError)
        logger.info("Authorization code exchanged for tokens")
        return token_set

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Obtain a new access token with a refresh token.

        The returned ``TokenSet`` carries a refresh token only if the provider
        rotated it; callers keep the previous one otherwise.

        Raises:
            RefreshError: On any failure. ``invalid_grant`` is set when the
                provider rejected the refresh token itself.
        """
        refresh_request = RefreshTokenRequest(
            token_endpoint=self.token_endpoint,
            refresh_token=refresh_token,
            client_id=self.client_id,
            client_secret=self._client_secret,
        )

        logger.debug(f"Refreshing access token at {self.token_endpoint}")

        token_set = await self._request(refresh_request.to_form_data(), RefreshError)
        logger.info(
            "Access token refreshed"
            + (" (refresh token rotated)" if token_set.refresh_token else "")
        )
        return token_set

    async def _request(
        self, form_data: dict[str, str], error_cls: type[TokenEndpointError]
    ) -> TokenSet:
        grant_type = form_data["grant_type"]
        try:
            response = await self._http_client.post(
                self.token_endpoint,
                data=form_data,
                headers=FORM_HEADERS,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Token endpoint timed out ({grant_type})")
            raise error_cls(
                f"Token endpoint timed out after {self.timeout}s", retryable=True
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"HTTP error reaching token endpoint ({grant_type}): {e}")
            raise error_cls(
                f"HTTP error reaching token endpoint: {e}", retryable=True
            ) from e

        return self._parse_token_response(response, error_cls)

    def _parse_token_response(
        self, response: httpx.Response, error_cls: type[TokenEndpointError]
    ) -> TokenSet:
        """Parse a token endpoint response into a ``TokenSet``.

        Handles both successful responses (200) and error responses (400+)
        according to RFC 6749 Section 5.
        """
        status = response.status_code

        if status != 200:
            error = self._parse_error_body(response)
            retryable = status >= 500
            logger.warning(
                f"Token endpoint rejected request with {status}: {error.error}"
            )
            raise error_cls(
                f"Token endpoint returned {status}: {error.error}"
                + (f" - {error.error_description}" if error.error_description else ""),
                retryable=retryable,
                provider_error=error.error,
                provider_description=error.error_description,
                http_status=status,
            )

        try:
            token_set = TokenResponse.model_validate(response.json()).to_token_set()
        except (ValueError, ValidationError) as e:
            logger.error("Token endpoint returned a malformed success response")
            raise error_cls(
                f"Invalid token response format: {e}",
                retryable=False,
                provider_error="invalid_response",
                http_status=status,
            ) from e

        return token_set

    @staticmethod
    def _parse_error_body(response: httpx.Response) -> TokenErrorResponse:
        try:
            data = response.json()
        except ValueError:
            return TokenErrorResponse(error=f"http_{response.status_code}")
        if not isinstance(data, dict):
            return TokenErrorResponse(error=f"http_{response.status_code}")
        try:
            return TokenErrorResponse.model_validate(data)
        except ValidationError:
            return TokenErrorResponse(error=f"http_{response.status_code}")

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._http_client.aclose()

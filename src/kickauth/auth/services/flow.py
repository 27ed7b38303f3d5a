"""OAuth 2.1 authorization flow controller.

Coordinates PKCE generation, the authorization redirect, callback validation,
code exchange, refresh and logout. All flow state lives in the browser's
signed cookies; the controller holds no per-user state and each phase returns
a ``FlowResult`` describing the cookies to set or clear.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from kickauth.auth.models.cookies import CookieName, IssuedCookie
from kickauth.auth.models.errors import (
    CsrfRejectedError,
    ExchangeError,
    FlowExpiredError,
    MissingParameterError,
    OAuth2Error,
    ProviderDeniedError,
    RefreshError,
    UnauthenticatedError,
)
from kickauth.auth.models.flow import AuthorizationRequest, AuthorizationResponse, FlowState
from kickauth.auth.models.tokens import TokenSet
from kickauth.auth.primitives.pkce import PKCEGenerator
from kickauth.auth.services.cookies import CredentialStore
from kickauth.auth.services.security import validate_state
from kickauth.auth.services.tokens import TokenExchangeClient

logger = logging.getLogger(__name__)


@dataclass
class FlowResult:
    """Outcome of one controller phase."""

    state: FlowState
    set_cookies: list[IssuedCookie] = field(default_factory=list)
    clear_cookies: list[CookieName] = field(default_factory=list)
    redirect_url: str | None = None
    token_set: TokenSet | None = None
    error: OAuth2Error | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OAuthFlowController:
    """Orchestrates the login, callback, refresh and logout phases.

    State machine:
        Idle -> FlowStarted -> Redirected -> CallbackReceived -> Authenticated
    with terminal failures FlowExpired, CsrfRejected, ProviderDenied and
    ExchangeFailed. Refresh runs from Authenticated only; logout returns to
    Idle from anywhere.
    """

    def __init__(
        self,
        *,
        authorize_url: str,
        client_id: str,
        redirect_uri: str,
        scopes: Sequence[str],
        token_client: TokenExchangeClient,
        credential_store: CredentialStore,
        landing_url: str = "/",
        pkce: PKCEGenerator | None = None,
    ):
        self.authorize_url = authorize_url
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.scopes = tuple(scopes)
        self.landing_url = landing_url
        self._token_client = token_client
        self._store = credential_store
        self._pkce = pkce or PKCEGenerator()

    def login(self) -> FlowResult:
        """Start a login: Idle -> FlowStarted.

        Sets the verifier and state cookies and returns the provider
        authorization URL. No network call is made.
        """
        params = self._pkce.generate_parameters()

        auth_request = AuthorizationRequest(
            authorization_endpoint=self.authorize_url,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            code_challenge=params.code_challenge,
            state=params.state,
        )

        logger.info(f"Starting authorization flow for client {self.client_id}")

        return FlowResult(
            state=FlowState.FLOW_STARTED,
            set_cookies=self._store.issue_flow(params.code_verifier, params.state),
            redirect_url=auth_request.build_authorization_url(),
        )

    async def callback(
        self, query: Mapping[str, str], cookies: Mapping[str, str]
    ) -> FlowResult:
        """Handle the provider redirect: FlowStarted -> CallbackReceived.

        Preconditions are checked in order and the first failure wins:
        provider error absent, code present, flow cookies valid, state
        matches. Flow cookies are cleared on every outcome so a state
        validates at most one callback.
        """
        clear = self._store.flow_cookie_names()
        response = AuthorizationResponse.from_query(query)

        try:
            code, verifier = self._validate_callback(response, cookies)
        except ProviderDeniedError as e:
            logger.warning(f"Provider denied authorization: {e.error}")
            return FlowResult(FlowState.PROVIDER_DENIED, clear_cookies=clear, error=e)
        except MissingParameterError as e:
            logger.warning(f"Authorization callback missing parameters: {e.missing}")
            return FlowResult(FlowState.INVALID_CALLBACK, clear_cookies=clear, error=e)
        except FlowExpiredError as e:
            logger.info("Authorization callback with expired or invalid flow cookies")
            return FlowResult(FlowState.FLOW_EXPIRED, clear_cookies=clear, error=e)
        except CsrfRejectedError as e:
            logger.warning(
                "Authorization callback state mismatch - rejecting as possible CSRF"
            )
            return FlowResult(FlowState.CSRF_REJECTED, clear_cookies=clear, error=e)

        try:
            token_set = await self._exchange_shielded(code, verifier)
        except ExchangeError as e:
            logger.error(
                f"Token exchange failed (retryable={e.retryable}, "
                f"provider_error={e.provider_error})"
            )
            return FlowResult(FlowState.EXCHANGE_FAILED, clear_cookies=clear, error=e)

        logger.info("Authorization callback complete - session established")
        return FlowResult(
            state=FlowState.AUTHENTICATED,
            set_cookies=self._store.issue_tokens(token_set),
            clear_cookies=clear,
            redirect_url=self.landing_url,
            token_set=token_set,
        )

    async def refresh(self, cookies: Mapping[str, str]) -> FlowResult:
        """Refresh the access token from the refresh-token cookie.

        On success the access token cookie is rewritten and the refresh token
        cookie is re-stored: the rotated token if the provider issued one,
        the previous one otherwise. On failure every credential cookie is
        cleared.
        """
        credentials = self._store.credential_cookie_names()
        refresh_token = self._store.read_refresh_token(cookies)
        if refresh_token is None:
            return FlowResult(
                FlowState.UNAUTHENTICATED,
                clear_cookies=credentials,
                error=UnauthenticatedError("Refresh token not found"),
            )

        try:
            token_set = await self._token_client.refresh(refresh_token)
        except RefreshError as e:
            logger.warning(
                f"Token refresh failed (invalid_grant={e.invalid_grant}) - "
                "clearing session"
            )
            return FlowResult(
                FlowState.UNAUTHENTICATED, clear_cookies=credentials, error=e
            )

        token_set = token_set.with_retained_refresh_token(refresh_token)
        return FlowResult(
            state=FlowState.AUTHENTICATED,
            set_cookies=self._store.issue_tokens(token_set),
            token_set=token_set,
        )

    def logout(self) -> FlowResult:
        """Clear every flow and credential cookie, whatever the current state."""
        logger.info("Session logged out")
        return FlowResult(
            state=FlowState.IDLE, clear_cookies=self._store.all_cookie_names()
        )

    def _validate_callback(
        self, response: AuthorizationResponse, cookies: Mapping[str, str]
    ) -> tuple[str, str]:
        if response.is_error():
            raise ProviderDeniedError(response.error, response.error_description)
        if response.code is None:
            raise MissingParameterError(["code"])

        verifier, expected_state = self._store.read_flow(cookies)
        validate_state(expected_state, response.state)
        return response.code, verifier

    async def _exchange_shielded(self, code: str, verifier: str) -> TokenSet:
        """Run the exchange so that a cancelled request does not abort it.

        If the caller is cancelled the provider call still completes and its
        outcome is discarded.
        """
        task = asyncio.ensure_future(self._token_client.exchange_code(code, verifier))
        task.add_done_callback(_log_discarded_exchange)
        return await asyncio.shield(task)


def _log_discarded_exchange(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None and not isinstance(error, ExchangeError):
        logger.error(f"Unexpected error during token exchange: {error!r}")

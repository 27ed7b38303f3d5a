"""Tests for the OAuth flow controller state machine.

High-impact tests covering:
- Login cookie issuance and authorization URL
- Callback precondition order and short-circuiting
- CSRF and expiry rejections without any token endpoint call
- Exchange failures, refresh rotation and teardown, logout
- Cancellation while the exchange is in flight
"""

import asyncio
from unittest.mock import AsyncMock, create_autospec
from urllib.parse import parse_qs, urlparse

import pytest

from kickauth.auth.models.cookies import ALL_COOKIES, CookieName
from kickauth.auth.models.errors import (
    CsrfRejectedError,
    ExchangeError,
    FlowExpiredError,
    MissingParameterError,
    ProviderDeniedError,
    RefreshError,
    UnauthenticatedError,
)
from kickauth.auth.models.flow import FlowState
from kickauth.auth.models.tokens import TokenSet
from kickauth.auth.primitives.pkce import PKCEGenerator
from kickauth.auth.services.cookies import CookieCodec, CredentialStore
from kickauth.auth.services.flow import OAuthFlowController
from kickauth.auth.services.tokens import TokenExchangeClient

SECRET = "controller-secret-0123456789abcdef"


def jar_from(cookies) -> dict[str, str]:
    return {cookie.name.value: cookie.value for cookie in cookies}


class ControllerTestBase:
    def setup_method(self):
        # Arrange
        self.store = CredentialStore(CookieCodec(SECRET), secure=False)
        self.token_client = create_autospec(TokenExchangeClient, instance=True)
        self.token_client.exchange_code = AsyncMock()
        self.token_client.refresh = AsyncMock()
        self.controller = OAuthFlowController(
            authorize_url="https://id.kick.example/oauth/authorize",
            client_id="client-123",
            redirect_uri="https://app.example.com/api/auth/callback",
            scopes=["user:read", "chat:write"],
            token_client=self.token_client,
            credential_store=self.store,
            landing_url="/dashboard?auth=success",
        )

    def start_flow(self) -> tuple[dict[str, str], str]:
        result = self.controller.login()
        state = parse_qs(urlparse(result.redirect_url).query)["state"][0]
        return jar_from(result.set_cookies), state


class TestLogin(ControllerTestBase):
    def test_login_sets_flow_cookies_and_returns_url(self):
        # Act
        result = self.controller.login()

        # Assert
        assert result.state == FlowState.FLOW_STARTED
        assert [c.name for c in result.set_cookies] == [
            CookieName.PKCE_VERIFIER,
            CookieName.OAUTH_STATE,
        ]
        query = parse_qs(urlparse(result.redirect_url).query)
        verifier, state = self.store.read_flow(jar_from(result.set_cookies))
        assert query["state"] == [state]
        assert query["code_challenge"] == [PKCEGenerator.challenge_from(verifier)]
        assert query["scope"] == ["user:read chat:write"]
        assert verifier not in result.redirect_url

        self.token_client.exchange_code.assert_not_awaited()

    def test_each_login_gets_fresh_parameters(self):
        first, state1 = self.start_flow()
        second, state2 = self.start_flow()

        assert state1 != state2
        assert first["pkce_verifier"] != second["pkce_verifier"]


class TestCallback(ControllerTestBase):
    async def test_successful_callback(self):
        # Arrange
        jar, state = self.start_flow()
        verifier, _ = self.store.read_flow(jar)
        self.token_client.exchange_code.return_value = TokenSet(
            access_token="T", expires_in_seconds=3600, refresh_token="R", scope="user:read"
        )

        # Act
        result = await self.controller.callback({"code": "abc", "state": state}, jar)

        # Assert
        assert result.ok
        assert result.state == FlowState.AUTHENTICATED
        assert result.redirect_url == "/dashboard?auth=success"
        self.token_client.exchange_code.assert_awaited_once_with("abc", verifier)

        issued = jar_from(result.set_cookies)
        assert self.store.read_access_token(issued) == "T"
        assert self.store.read_refresh_token(issued) == "R"
        assert result.clear_cookies == [
            CookieName.PKCE_VERIFIER,
            CookieName.OAUTH_STATE,
        ]

    async def test_state_mismatch_is_csrf_rejected_without_exchange(self):
        jar, state = self.start_flow()

        result = await self.controller.callback(
            {"code": "abc", "state": state + "x"}, jar
        )

        assert result.state == FlowState.CSRF_REJECTED
        assert isinstance(result.error, CsrfRejectedError)
        assert result.set_cookies == []
        self.token_client.exchange_code.assert_not_awaited()

    async def test_missing_state_param_is_csrf_rejected(self):
        jar, _ = self.start_flow()

        result = await self.controller.callback({"code": "abc"}, jar)

        assert isinstance(result.error, CsrfRejectedError)
        self.token_client.exchange_code.assert_not_awaited()

    async def test_missing_verifier_cookie_is_flow_expired(self):
        # Arrange
        jar, state = self.start_flow()
        del jar["pkce_verifier"]

        # Act
        result = await self.controller.callback({"code": "abc", "state": state}, jar)

        # Assert
        assert result.state == FlowState.FLOW_EXPIRED
        assert isinstance(result.error, FlowExpiredError)
        self.token_client.exchange_code.assert_not_awaited()

    async def test_tampered_state_cookie_is_flow_expired(self):
        jar, state = self.start_flow()
        jar["oauth_state"] = jar["oauth_state"][:-2] + "AA"

        result = await self.controller.callback({"code": "abc", "state": state}, jar)

        assert isinstance(result.error, FlowExpiredError)
        self.token_client.exchange_code.assert_not_awaited()

    async def test_provider_error_wins_over_everything(self):
        result = await self.controller.callback(
            {"error": "access_denied", "error_description": "User said no"}, {}
        )

        assert result.state == FlowState.PROVIDER_DENIED
        assert isinstance(result.error, ProviderDeniedError)
        assert "User said no" in result.error.public_message
        self.token_client.exchange_code.assert_not_awaited()

    async def test_missing_code_checked_before_cookies(self):
        result = await self.controller.callback({"state": "whatever"}, {})

        assert isinstance(result.error, MissingParameterError)
        assert result.error.missing == ["code"]
        self.token_client.exchange_code.assert_not_awaited()

    async def test_failures_clear_flow_cookies(self):
        jar, state = self.start_flow()

        result = await self.controller.callback({"code": "abc", "state": "bad"}, jar)

        assert set(result.clear_cookies) == {
            CookieName.PKCE_VERIFIER,
            CookieName.OAUTH_STATE,
        }

    async def test_exchange_failure(self):
        # Arrange
        jar, state = self.start_flow()
        self.token_client.exchange_code.side_effect = ExchangeError(
            "Token endpoint returned 400: invalid_grant",
            retryable=False,
            provider_error="invalid_grant",
        )

        # Act
        result = await self.controller.callback({"code": "abc", "state": state}, jar)

        # Assert
        assert result.state == FlowState.EXCHANGE_FAILED
        assert isinstance(result.error, ExchangeError)
        assert result.set_cookies == []
        self.token_client.exchange_code.assert_awaited_once()

    async def test_cancelled_callback_lets_exchange_finish(self):
        # Arrange
        jar, state = self.start_flow()
        started = asyncio.Event()
        release = asyncio.Event()
        finished = asyncio.Event()

        async def slow_exchange(code, verifier):
            started.set()
            await release.wait()
            finished.set()
            return TokenSet(access_token="T", expires_in_seconds=60)

        self.token_client.exchange_code.side_effect = slow_exchange

        # Act
        request = asyncio.ensure_future(
            self.controller.callback({"code": "abc", "state": state}, jar)
        )
        await started.wait()
        request.cancel()
        with pytest.raises(asyncio.CancelledError):
            await request
        release.set()
        await asyncio.wait_for(finished.wait(), timeout=1)

        # Assert
        assert finished.is_set()


class TestRefresh(ControllerTestBase):
    def session_jar(self, refresh_token: str | None = "R1") -> dict[str, str]:
        token_set = TokenSet(
            access_token="T1", expires_in_seconds=60, refresh_token=refresh_token
        )
        return jar_from(self.store.issue_tokens(token_set))

    async def test_refresh_without_rotation_retains_refresh_token(self):
        # Arrange
        self.token_client.refresh.return_value = TokenSet(
            access_token="T2", expires_in_seconds=7200
        )

        # Act
        result = await self.controller.refresh(self.session_jar())

        # Assert
        assert result.ok
        self.token_client.refresh.assert_awaited_once_with("R1")
        issued = {c.name: c for c in result.set_cookies}
        jar = jar_from(result.set_cookies)
        assert self.store.read_access_token(jar) == "T2"
        assert self.store.read_refresh_token(jar) == "R1"
        assert issued[CookieName.ACCESS_TOKEN].max_age == 7200
        assert result.token_set.refresh_token == "R1"

    async def test_refresh_with_rotation_stores_new_token(self):
        self.token_client.refresh.return_value = TokenSet(
            access_token="T2", expires_in_seconds=7200, refresh_token="R2"
        )

        result = await self.controller.refresh(self.session_jar())

        assert self.store.read_refresh_token(jar_from(result.set_cookies)) == "R2"

    async def test_refresh_failure_tears_down_session(self):
        self.token_client.refresh.side_effect = RefreshError(
            "invalid", provider_error="invalid_grant", http_status=400
        )

        result = await self.controller.refresh(self.session_jar())

        assert result.state == FlowState.UNAUTHENTICATED
        assert result.error.invalid_grant
        assert set(result.clear_cookies) == {
            CookieName.ACCESS_TOKEN,
            CookieName.REFRESH_TOKEN,
        }
        assert result.set_cookies == []

    async def test_refresh_without_cookie(self):
        result = await self.controller.refresh(self.session_jar(refresh_token=None))

        assert isinstance(result.error, UnauthenticatedError)
        self.token_client.refresh.assert_not_awaited()


class TestLogout(ControllerTestBase):
    def test_logout_clears_every_cookie(self):
        result = self.controller.logout()

        assert result.state == FlowState.IDLE
        assert set(result.clear_cookies) == set(ALL_COOKIES)

    def test_logout_is_idempotent(self):
        assert self.controller.logout().clear_cookies == self.controller.logout().clear_cookies

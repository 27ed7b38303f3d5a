"""Starlette application exposing the OAuth login surface.

Routes (all under ``/api``):
    GET  /health
    GET  /auth/login      302 to the provider
    GET  /auth/callback   302 to the landing page, or a JSON error
    POST /auth/logout
    POST /auth/refresh    requires the refresh token cookie
    GET  /auth/session    requires the access token cookie
    GET  /auth/status     optional access token
    GET  /auth/config
    GET  /auth/debug      non-production only
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone

import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Mount, Route

from kickauth.auth.models.cookies import CookieName
from kickauth.auth.models.errors import (
    FlowValidationError,
    OAuth2Error,
    RefreshError,
    UnauthenticatedError,
)
from kickauth.auth.services.cookies import CookieCodec, CredentialStore
from kickauth.auth.services.diagnostics import (
    decode_jwt_payload_unverified,
    describe_claims,
    mask_token,
)
from kickauth.auth.services.flow import FlowResult, OAuthFlowController
from kickauth.auth.services.tokens import TokenExchangeClient
from kickauth.config import Settings
from kickauth.server.gate import SessionGate

logger = logging.getLogger(__name__)

LOGIN_PATH = "/api/auth/login"


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class AuthHandlers:
    """HTTP handlers that translate requests into controller phases."""

    def __init__(
        self,
        settings: Settings,
        controller: OAuthFlowController,
        store: CredentialStore,
    ):
        self.settings = settings
        self.controller = controller
        self.store = store

    async def login(self, request: Request) -> Response:
        result = self.controller.login()
        response = RedirectResponse(result.redirect_url, status_code=302)
        self.apply_cookies(response, result)
        return response

    async def callback(self, request: Request) -> Response:
        result = await self.controller.callback(request.query_params, request.cookies)
        if result.ok:
            response: Response = RedirectResponse(result.redirect_url, status_code=302)
        else:
            response = self.error_response(result.error)
        self.apply_cookies(response, result)
        return response

    async def logout(self, request: Request) -> Response:
        result = self.controller.logout()
        response = JSONResponse(
            {
                "status": "success",
                "message": "Signed out",
                "redirect": self.settings.logout_redirect,
            }
        )
        self.apply_cookies(response, result)
        return response

    async def refresh(self, request: Request) -> Response:
        result = await self.controller.refresh(request.cookies)
        if result.ok:
            token_set = result.token_set
            response: Response = JSONResponse(
                {
                    "status": "success",
                    "message": "Token refreshed",
                    "expires_in": token_set.expires_in_seconds,
                    "expires_at": _iso(token_set.expires_at()),
                }
            )
        else:
            response = self.error_response(result.error)
        self.apply_cookies(response, result)
        return response

    async def session(self, request: Request) -> Response:
        session = self.store.read_session(request.cookies)
        if session is None:
            raise UnauthenticatedError("Access token not found")
        _, scope, expires_at = session
        return JSONResponse(
            {
                "authenticated": True,
                "scope": scope,
                "access_token_expires_at": _iso(expires_at),
                "has_refresh_token": self.store.read_refresh_token(request.cookies)
                is not None,
            }
        )

    async def status(self, request: Request) -> Response:
        return JSONResponse({"authenticated": request.state.authenticated})

    async def config(self, request: Request) -> Response:
        return JSONResponse(self.settings.describe())

    async def debug(self, request: Request) -> Response:
        if self.settings.is_production:
            return JSONResponse(
                {"status": "error", "error": "not_found", "message": "Not found"},
                status_code=404,
            )

        access_token = self.store.read_access_token(request.cookies)
        refresh_token = self.store.read_refresh_token(request.cookies)
        info: dict[str, object] = {
            "session": {
                "cookies_present": {
                    name.value: name.value in request.cookies for name in CookieName
                },
                "access_token_preview": mask_token(access_token),
                "refresh_token_preview": mask_token(refresh_token),
            },
            "environment": self.settings.environment,
            "server_time": datetime.now(timezone.utc).isoformat(),
        }
        if access_token:
            claims = decode_jwt_payload_unverified(access_token)
            if claims is not None:
                info["token_decoded"] = describe_claims(claims)
        return JSONResponse(info)

    async def health(self, request: Request) -> Response:
        return JSONResponse({"status": "ok", "environment": self.settings.environment})

    def apply_cookies(self, response: Response, result: FlowResult) -> None:
        """Write the cookie mutations of a ``FlowResult`` onto ``response``."""
        attributes = self.store.attributes
        issued = {cookie.name for cookie in result.set_cookies}
        for name in result.clear_cookies:
            if name in issued:
                continue
            response.delete_cookie(
                name.value,
                path=attributes.path,
                secure=attributes.secure,
                httponly=attributes.httponly,
                samesite=attributes.samesite,
            )
        for cookie in result.set_cookies:
            response.set_cookie(
                cookie.name.value,
                cookie.value,
                max_age=cookie.max_age,
                path=cookie.attributes.path,
                secure=cookie.attributes.secure,
                httponly=cookie.attributes.httponly,
                samesite=cookie.attributes.samesite,
            )

    def error_response(self, error: OAuth2Error) -> JSONResponse:
        body: dict[str, object] = {
            "status": "error",
            "error": error.error_code,
            "message": error.public_message,
        }
        if isinstance(error, (FlowValidationError, RefreshError, UnauthenticatedError)):
            body["retry"] = LOGIN_PATH
        if not self.settings.is_production:
            body["details"] = error.detail
        return JSONResponse(body, status_code=error.status_code)


def create_app(
    settings: Settings, http_client: httpx.AsyncClient | None = None
) -> Starlette:
    """Build the application.

    Args:
        settings: Service configuration
        http_client: Optional client for the token endpoint; tests inject one
            backed by ``httpx.MockTransport``
    """
    store = CredentialStore(
        CookieCodec(settings.session_secret.get_secret_value()),
        secure=settings.is_production,
    )
    token_client = TokenExchangeClient(
        token_endpoint=settings.token_url,
        client_id=settings.client_id,
        client_secret=settings.client_secret.get_secret_value(),
        redirect_uri=settings.redirect_uri,
        http_client=http_client,
        timeout=settings.http_timeout,
    )
    controller = OAuthFlowController(
        authorize_url=settings.authorize_url,
        client_id=settings.client_id,
        redirect_uri=settings.redirect_uri,
        scopes=settings.scopes,
        token_client=token_client,
        credential_store=store,
        landing_url=settings.landing_path,
    )
    gate = SessionGate(store)
    handlers = AuthHandlers(settings, controller, store)

    async def handle_oauth_error(request: Request, exc: Exception) -> Response:
        return handlers.error_response(exc)

    async def handle_unexpected_error(request: Request, exc: Exception) -> Response:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        body = {
            "status": "error",
            "error": "internal_error",
            "message": "Internal server error",
        }
        if not settings.is_production:
            body["details"] = str(exc)
        return JSONResponse(body, status_code=500)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info(
            f"Auth service starting ({settings.environment}, "
            f"client_id={settings.client_id})"
        )
        yield
        await token_client.close()

    auth_routes = [
        Route("/login", handlers.login, methods=["GET"]),
        Route("/callback", handlers.callback, methods=["GET"]),
        Route("/logout", handlers.logout, methods=["POST"]),
        Route(
            "/refresh",
            gate.require_refresh_token(handlers.refresh),
            methods=["POST"],
        ),
        Route(
            "/session",
            gate.require_access_token(handlers.session),
            methods=["GET"],
        ),
        Route(
            "/status",
            gate.optional_access_token(handlers.status),
            methods=["GET"],
        ),
        Route("/config", handlers.config, methods=["GET"]),
        Route("/debug", handlers.debug, methods=["GET"]),
    ]

    app = Starlette(
        routes=[
            Mount(
                "/api",
                routes=[
                    Route("/health", handlers.health, methods=["GET"]),
                    Mount("/auth", routes=auth_routes),
                ],
            )
        ],
        exception_handlers={
            OAuth2Error: handle_oauth_error,
            Exception: handle_unexpected_error,
        },
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.controller = controller
    app.state.credential_store = store
    app.state.session_gate = gate
    return app

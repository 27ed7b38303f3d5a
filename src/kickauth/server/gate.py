"""Session gates for Starlette endpoints.

Each gate wraps an endpoint and inspects the signed credential cookies before
the endpoint runs. Failures raise ``UnauthenticatedError``, which the
application's exception handler renders as a 401.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable, Mapping

from starlette.requests import Request
from starlette.responses import Response

from kickauth.auth.models.errors import UnauthenticatedError
from kickauth.auth.services.cookies import CredentialStore

logger = logging.getLogger(__name__)

Endpoint = Callable[[Request], Awaitable[Response]]


class SessionGate:
    """Gates requests on the access-token and refresh-token cookies.

    - ``require_access_token``: 401 unless a valid access token cookie exists
    - ``optional_access_token``: never fails, marks anonymous requests
    - ``require_refresh_token``: 401 unless a refresh token cookie exists

    The gated endpoint finds ``request.state.access_token``,
    ``request.state.authenticated`` and ``request.state.refresh_token``.
    """

    def __init__(self, store: CredentialStore):
        self._store = store

    def check_access_token(self, cookies: Mapping[str, str]) -> str:
        token = self._store.read_access_token(cookies)
        if token is None:
            raise UnauthenticatedError("Access token not found")
        return token

    def check_refresh_token(self, cookies: Mapping[str, str]) -> str:
        token = self._store.read_refresh_token(cookies)
        if token is None:
            raise UnauthenticatedError("Refresh token not found")
        return token

    def require_access_token(self, endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def wrapper(request: Request) -> Response:
            try:
                token = self.check_access_token(request.cookies)
            except UnauthenticatedError:
                logger.info(f"Access denied to {request.url.path}: no access token")
                raise
            request.state.access_token = token
            request.state.authenticated = True
            return await endpoint(request)

        return wrapper

    def optional_access_token(self, endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def wrapper(request: Request) -> Response:
            token = self._store.read_access_token(request.cookies)
            request.state.access_token = token
            request.state.authenticated = token is not None
            return await endpoint(request)

        return wrapper

    def require_refresh_token(self, endpoint: Endpoint) -> Endpoint:
        @functools.wraps(endpoint)
        async def wrapper(request: Request) -> Response:
            try:
                token = self.check_refresh_token(request.cookies)
            except UnauthenticatedError:
                logger.info(f"Access denied to {request.url.path}: no refresh token")
                raise
            request.state.refresh_token = token
            return await endpoint(request)

        return wrapper

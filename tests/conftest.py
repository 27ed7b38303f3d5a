import json
from urllib.parse import parse_qs

import httpx
import pytest

from kickauth.config import Settings

SESSION_SECRET = "test-session-secret-0123456789abcdef"
TOKEN_URL = "https://id.kick.example/oauth/token"


class FakeTokenEndpoint:
    """Scripted provider token endpoint for ``httpx.MockTransport``.

    Queue responses with ``respond``; every request form body is recorded in
    ``requests``.
    """

    def __init__(self):
        self.requests: list[dict[str, str]] = []
        self._responses: list[httpx.Response | Exception] = []

    def respond(self, status_code: int = 200, **body) -> None:
        self._responses.append(
            httpx.Response(
                status_code,
                content=json.dumps(body).encode(),
                headers={"Content-Type": "application/json"},
            )
        )

    def fail_with(self, error: Exception) -> None:
        self._responses.append(error)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.requests.append(form)
        if not self._responses:
            raise AssertionError("Unexpected call to token endpoint")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def settings() -> Settings:
    return Settings(
        client_id="client-123",
        client_secret="client-secret-xyz",
        redirect_uri="http://testserver/api/auth/callback",
        token_url=TOKEN_URL,
        authorize_url="https://id.kick.example/oauth/authorize",
        scopes=["user:read", "channel:read"],
        session_secret=SESSION_SECRET,
        environment="development",
        _env_file=None,
    )


@pytest.fixture
def token_endpoint() -> FakeTokenEndpoint:
    return FakeTokenEndpoint()


@pytest.fixture
def mock_http_client(token_endpoint) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(token_endpoint))

"""Signed cookie codec and credential store.

Cookie values have the form ``<payload>.<signature>``, where ``payload`` is
base64url JSON ``{"v": value, "exp": unix_seconds}`` and ``signature`` is
base64url HMAC-SHA256 over the payload text. The expiry is part of the
signed payload, so a cookie replayed after its TTL fails verification even
if the browser kept it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from kickauth.auth.models.cookies import (
    ALL_COOKIES,
    CREDENTIAL_COOKIES,
    FLOW_COOKIES,
    FLOW_TTL_SECONDS,
    REFRESH_TOKEN_TTL_SECONDS,
    CookieAttributes,
    CookieName,
    IssuedCookie,
    SignedPayload,
)
from kickauth.auth.models.errors import FlowExpiredError, InvalidSignatureError
from kickauth.auth.models.tokens import TokenSet

logger = logging.getLogger(__name__)

SEPARATOR = "."


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


class CookieCodec:
    """HMAC-SHA256 signer for cookie values.

    Verification recomputes the signature over the received payload text and
    compares the encoded signatures with ``hmac.compare_digest``. Every
    failure raises the same ``InvalidSignatureError``.
    """

    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        if not secret:
            raise ValueError("Cookie signing secret must not be empty")
        self._key = hashlib.sha256(b"kickauth.cookie:" + secret.encode("utf-8")).digest()
        self._clock = clock

    def encode(self, value: Any, ttl: int) -> str:
        """Serialize and sign ``value`` so it verifies for ``ttl`` seconds."""
        if ttl <= 0:
            raise ValueError("Cookie TTL must be positive")
        body = json.dumps(
            {"v": value, "exp": int(self._clock()) + int(ttl)},
            separators=(",", ":"),
            sort_keys=True,
        )
        payload = _b64encode(body.encode("utf-8"))
        return f"{payload}{SEPARATOR}{self._sign(payload)}"

    def open(self, cookie_value: str) -> SignedPayload:
        """Verify ``cookie_value`` and return its value and expiry.

        Raises:
            InvalidSignatureError: On any mismatch, truncation or expiry
        """
        if not cookie_value or SEPARATOR not in cookie_value:
            raise InvalidSignatureError()

        payload, signature = cookie_value.rsplit(SEPARATOR, 1)
        try:
            expected = self._sign(payload)
            if not hmac.compare_digest(
                expected.encode("ascii"), signature.encode("utf-8")
            ):
                raise InvalidSignatureError()
            data = json.loads(_b64decode(payload))
        except (UnicodeError, binascii.Error, ValueError) as e:
            raise InvalidSignatureError() from e

        if not isinstance(data, dict) or "v" not in data:
            raise InvalidSignatureError()
        expires_at = data.get("exp")
        if not isinstance(expires_at, int) or expires_at <= self._clock():
            raise InvalidSignatureError()

        return SignedPayload(value=data["v"], expires_at=expires_at)

    def decode(self, cookie_value: str) -> Any:
        return self.open(cookie_value).value

    def _sign(self, payload: str) -> str:
        digest = hmac.new(self._key, payload.encode("ascii"), hashlib.sha256).digest()
        return _b64encode(digest)


class CredentialStore:
    """Maps flow parameters and token sets onto signed cookies.

    TTLs per credential kind:
    - verifier and state: 10 minutes
    - access token: the provider's ``expires_in``
    - refresh token: 30 days, reset every time it is stored
    """

    def __init__(self, codec: CookieCodec, secure: bool):
        self.codec = codec
        self.attributes = CookieAttributes(secure=secure)

    def issue(self, name: CookieName, value: Any, ttl: int) -> IssuedCookie:
        return IssuedCookie(
            name=name,
            value=self.codec.encode(value, ttl),
            max_age=int(ttl),
            attributes=self.attributes,
        )

    def issue_flow(self, code_verifier: str, state: str) -> list[IssuedCookie]:
        return [
            self.issue(CookieName.PKCE_VERIFIER, code_verifier, FLOW_TTL_SECONDS),
            self.issue(CookieName.OAUTH_STATE, state, FLOW_TTL_SECONDS),
        ]

    def issue_tokens(self, token_set: TokenSet) -> list[IssuedCookie]:
        cookies = [
            self.issue(
                CookieName.ACCESS_TOKEN,
                {"token": token_set.access_token, "scope": token_set.scope},
                token_set.expires_in_seconds,
            )
        ]
        if token_set.refresh_token:
            cookies.append(
                self.issue(
                    CookieName.REFRESH_TOKEN,
                    token_set.refresh_token,
                    REFRESH_TOKEN_TTL_SECONDS,
                )
            )
        return cookies

    def read_flow(self, cookies: Mapping[str, str]) -> tuple[str, str]:
        """Return the stored ``(code_verifier, state)``.

        Raises:
            FlowExpiredError: If either cookie is missing, expired or tampered
        """
        try:
            verifier = self._read_str(cookies, CookieName.PKCE_VERIFIER)
            state = self._read_str(cookies, CookieName.OAUTH_STATE)
        except InvalidSignatureError as e:
            raise FlowExpiredError("Login flow cookies missing, expired or invalid") from e
        return verifier, state

    def read_access_token(self, cookies: Mapping[str, str]) -> str | None:
        session = self.read_session(cookies)
        return session[0] if session else None

    def read_session(
        self, cookies: Mapping[str, str]
    ) -> tuple[str, str, int] | None:
        """Return ``(access_token, scope, expires_at)`` or None if absent/invalid."""
        raw = cookies.get(CookieName.ACCESS_TOKEN.value)
        if not raw:
            return None
        try:
            signed = self.codec.open(raw)
        except InvalidSignatureError:
            logger.debug("Discarding invalid access token cookie")
            return None
        value = signed.value
        if not isinstance(value, dict) or not isinstance(value.get("token"), str):
            return None
        return value["token"], str(value.get("scope") or ""), signed.expires_at

    def read_refresh_token(self, cookies: Mapping[str, str]) -> str | None:
        try:
            return self._read_str(cookies, CookieName.REFRESH_TOKEN)
        except InvalidSignatureError:
            return None

    def _read_str(self, cookies: Mapping[str, str], name: CookieName) -> str:
        raw = cookies.get(name.value)
        if not raw:
            raise InvalidSignatureError()
        value = self.codec.decode(raw)
        if not isinstance(value, str) or not value:
            raise InvalidSignatureError()
        return value

    @staticmethod
    def flow_cookie_names() -> list[CookieName]:
        return list(FLOW_COOKIES)

    @staticmethod
    def credential_cookie_names() -> list[CookieName]:
        return list(CREDENTIAL_COOKIES)

    @staticmethod
    def all_cookie_names() -> list[CookieName]:
        return list(ALL_COOKIES)

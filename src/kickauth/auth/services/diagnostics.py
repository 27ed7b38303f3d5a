"""Non-production session diagnostics.

The JWT payload decoding here does NOT verify the token signature. Its output
is for display on development debug endpoints only and must never feed an
authorization decision.
"""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Any


def mask_token(token: str | None, visible: int = 6) -> str | None:
    """Show only the edges of a token, e.g. ``abcdef...uvwxyz``."""
    if not token:
        return None
    if len(token) <= visible * 2:
        return "*" * len(token)
    return f"{token[:visible]}...{token[-visible:]}"


def decode_jwt_payload_unverified(token: str) -> dict[str, Any] | None:
    """Return the JWT payload claims, or None if ``token`` is not a JWT.

    The signature is not checked.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1]
    try:
        raw = base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))
        payload = json.loads(raw)
    except (binascii.Error, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def describe_claims(payload: dict[str, Any]) -> dict[str, Any]:
    def as_iso(value: Any) -> str | None:
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return None
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            return None

    return {
        "payload": payload,
        "issued_at": as_iso(payload.get("iat")),
        "expires_at": as_iso(payload.get("exp")),
        "scopes": payload.get("scope"),
        "signature_verified": False,
    }

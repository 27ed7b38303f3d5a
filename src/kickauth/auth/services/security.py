"""Security utilities for OAuth 2.1 flows.

Constant-time comparisons used for CSRF state validation.
"""

from __future__ import annotations

import hmac

from kickauth.auth.models.errors import CsrfRejectedError


def constant_time_equals(expected: str, actual: str) -> bool:
    """Compare two strings without leaking timing information."""
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))


def validate_state(expected: str, actual: str | None) -> None:
    """Validate state parameter matches expected value.

    Args:
        expected: State stored in the signed cookie at login
        actual: State received on the callback

    Raises:
        CsrfRejectedError: If the states differ or the callback has none
    """
    if actual is None or not constant_time_equals(expected, actual):
        raise CsrfRejectedError("State parameter mismatch - possible CSRF attack")

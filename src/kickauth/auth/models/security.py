"""Security-related models for the OAuth 2.1 flow.

Contains the per-login PKCE verifier/challenge pair and CSRF state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# RFC 7636 Section 4.1 unreserved characters
_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


@dataclass(frozen=True)
class FlowParameters:
    """PKCE and state parameters for a single login attempt (RFC 7636).

    Created on login, held by the browser in two signed cookies until the
    callback consumes them.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str = field()
    state: str = field(repr=False)
    code_challenge_method: str = field(default="S256")

    def __post_init__(self) -> None:
        """Validate parameters meet RFC 7636 requirements."""
        if not _VERIFIER_PATTERN.match(self.code_verifier):
            raise ValueError(
                "code_verifier must be 43-128 unreserved characters"
            )
        if len(self.code_challenge) != 43:
            raise ValueError("code_challenge must be 43 characters")
        if len(self.state) < 22:
            raise ValueError("state must carry at least 128 bits of entropy")
        if self.code_challenge_method != "S256":
            raise ValueError("Only S256 code challenge method is supported")

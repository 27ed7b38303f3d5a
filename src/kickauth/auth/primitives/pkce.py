"""PKCE (Proof Key for Code Exchange) generation for OAuth 2.1.

Implements RFC 7636 parameter generation to prevent authorization code
interception attacks, plus the independent CSRF state token.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
import string

from kickauth.auth.models.errors import OAuth2Error
from kickauth.auth.models.security import FlowParameters

VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"
STATE_ALPHABET = string.ascii_letters + string.digits + "-_"

VERIFIER_LENGTH = 128
STATE_LENGTH = 43


class PKCEGenerator:
    """Generates PKCE verifier/challenge pairs and state tokens.

    This implementation follows RFC 7636 requirements:
    - Uses S256 code challenge method (SHA256 + base64url)
    - Draws every random value from the ``secrets`` CSPRNG
    - Keeps the state independent of the verifier
    """

    def generate_parameters(self) -> FlowParameters:
        """Generate fresh flow parameters for one login attempt.

        Returns:
            FlowParameters: Immutable verifier, challenge and state

        Raises:
            OAuth2Error: If parameter generation fails
        """
        try:
            code_verifier = self.new_verifier()
            return FlowParameters(
                code_verifier=code_verifier,
                code_challenge=self.challenge_from(code_verifier),
                state=self.new_state(),
            )
        except ValueError as e:
            raise OAuth2Error(f"Failed to generate PKCE parameters: {e}") from e

    @staticmethod
    def new_verifier() -> str:
        """Generate a cryptographically secure code verifier.

        RFC 7636 Section 4.1: code verifier must be 43-128 characters long
        and use only unreserved characters:
            [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~"

        Returns:
            A 128-character code verifier (about 780 bits of entropy)
        """
        return "".join(secrets.choice(VERIFIER_ALPHABET) for _ in range(VERIFIER_LENGTH))

    @staticmethod
    def challenge_from(code_verifier: str) -> str:
        """Derive the S256 code challenge for a verifier.

        RFC 7636 Section 4.2: BASE64URL-ENCODE(SHA256(ASCII(code_verifier)))
        with the padding stripped.
        """
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")

    @staticmethod
    def new_state() -> str:
        """Generate a state token for CSRF protection.

        Returns:
            A 43-character URL-safe token (258 bits of entropy)
        """
        return "".join(secrets.choice(STATE_ALPHABET) for _ in range(STATE_LENGTH))

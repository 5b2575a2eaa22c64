"""Bearer token verification.

Tokens are issued by the TutorLink account service; this module only
verifies them and extracts the user id. Both the HTTP dependencies and the
WebSocket handshake go through ``TokenVerifier.verify_claims``.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import jwt

from tutorlink.errors import AuthenticationError

logger = logging.getLogger(__name__)


class TokenVerifier:
    """Verifies signed JWTs and yields a stable user identifier."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", user_claim: str = "userId"):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.user_claim = user_claim

    def verify(self, token: Optional[str]) -> str:
        """Validate a credential and return the user id it was issued for.

        Args:
            token: Raw JWT (without the ``Bearer`` prefix).

        Returns:
            The user id from the configured claim, or ``sub``.

        Raises:
            AuthenticationError: If the token is missing, expired, has a bad
                signature or carries no usable user id.
        """
        user_id, _claims = self.verify_claims(token)
        return user_id

    def verify_claims(self, token: Optional[str]) -> Tuple[str, Dict[str, Any]]:
        """Like ``verify`` but also return the decoded claims.

        The claims may carry the caller's public profile (``firstName``,
        ``lastName``, ``avatar``, ``role``).
        """
        if not token:
            raise AuthenticationError("Authentication token is required")

        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Authentication token has expired")
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected token: %s", e)
            raise AuthenticationError("Authentication token is invalid")

        user_id = claims.get(self.user_claim) or claims.get("sub")
        if user_id is None or str(user_id).strip() == "":
            raise AuthenticationError("Authentication token is invalid")
        return str(user_id), claims


def extract_bearer(header_value: Optional[str]) -> Optional[str]:
    """Return the token part of an ``Authorization: Bearer <token>`` header."""
    if not header_value:
        return None
    scheme, _, token = header_value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()

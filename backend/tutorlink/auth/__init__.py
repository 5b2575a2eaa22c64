"""Authentication module.

Verifies the bearer JWT presented on HTTP requests and on the WebSocket
handshake. Token issuance lives in the account service.
"""

from .service import TokenVerifier, extract_bearer

__all__ = [
    "TokenVerifier",
    "extract_bearer",
]

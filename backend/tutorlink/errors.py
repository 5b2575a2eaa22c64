"""Error taxonomy shared by the HTTP API and the WebSocket gateway.

Every error carries the HTTP status it maps to and the message that may be
shown to the client. Handlers registered by ``register_exception_handlers``
turn them into ``{"error": message}`` JSON responses; the socket gateway
turns them into ``error`` events.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base class for errors that are surfaced to clients."""

    status_code: int = 400
    default_message: str = "Bad request"

    def __init__(self, message: str = "", status_code: int = 0) -> None:
        self.message = message or self.default_message
        if status_code:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AppError):
    """Client-correctable input problem (missing body, missing destination)."""

    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(AppError):
    """Missing, malformed or expired credential."""

    status_code = 401
    default_message = "Authentication required"


class AuthorizationError(AppError):
    """Caller is not a member of the conversation.

    The message is always generic so that the existence of a conversation is
    never disclosed to non-members.
    """

    status_code = 403
    default_message = "Not authorized"

    def __init__(self, message: str = "", status_code: int = 0) -> None:
        if message:
            logger.debug("Authorization denied: %s", message)
        super().__init__(self.default_message, status_code)


class NotFoundError(AppError):
    status_code = 404
    default_message = "Not found"


class TransientStoreError(AppError):
    """Durable store I/O failure. Not retried here; the client retries."""

    status_code = 503
    default_message = "Service temporarily unavailable"


class BroadcastError(AppError):
    """A live delivery target could not be reached.

    Never surfaced to the caller of the triggering operation.
    """

    status_code = 500
    default_message = "Broadcast failed"


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto JSON responses."""

    @app.exception_handler(TransientStoreError)
    async def store_error_handler(request: Request, exc: TransientStoreError):
        logger.error("Store failure on %s %s: %r", request.method, request.url.path, exc.__cause__ or exc)
        return JSONResponse(
            {"error": TransientStoreError.default_message},
            status_code=exc.status_code,
        )

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.info("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

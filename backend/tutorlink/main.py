"""TutorLink Messaging Backend.

This is the main entry point for the TutorLink real-time messaging service.
Students and tutors exchange direct messages; the service persists
conversations and messages, keeps per-user notifications, and pushes
presence, typing, delivery and read receipts to live WebSocket clients.

Modules:
    - auth: Bearer JWT verification for HTTP and WebSocket
    - messaging: DuckDB conversation store, lifecycle and messaging service
    - notifications: DuckDB-backed per-user notification sink
    - chat: Presence registry, room router, typing state and the WebSocket gateway
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tutorlink import __version__
from tutorlink.chat.router import router as chat_router
from tutorlink.config import AppSettings, get_config
from tutorlink.dependencies import build_services
from tutorlink.errors import register_exception_handlers
from tutorlink.messaging.router import router as messaging_router
from tutorlink.notifications.router import router as notifications_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings to run with. Defaults to the YAML-loaded settings.

    Returns:
        FastAPI: Application whose services are created on startup and
        closed on shutdown.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Apply configured log level to root logger so that
        # `logging.level: "debug"` in tutorlink.settings.yaml activates DEBUG output.
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        app.state.services = build_services(config)
        logger.info(
            f"TutorLink messaging ready on "
            f"http://{config.server.host}:{config.server.port}"
        )

        yield  # Application runs here

        # Shutdown
        app.state.services.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="TutorLink Messaging API",
        description="Real-time messaging backend for the TutorLink tutoring marketplace",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Register all routers
    app.include_router(chat_router)
    app.include_router(messaging_router)
    app.include_router(notifications_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_config()
    uvicorn.run("tutorlink.main:app", host=settings.server.host, port=settings.server.port)

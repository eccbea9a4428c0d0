"""Chathub Backend Application.

This is the main entry point for the chathub service, a real-time multi-room
chat coordinator.

Modules:
    - chat: WebSocket transport, session coordinator and fan-out gateway
    - messages: DuckDB message store and search endpoint
    - presence: Connection -> session registry
    - rooms: Room directory and room endpoints
    - auth: Credential collaborator
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from chathub.chat.router import router as chat_router
from chathub.config import AppSettings, get_config
from chathub.messages.router import router as messages_router
from chathub.rooms.router import router as rooms_router
from chathub.runtime import ChatRuntime

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppSettings] = None) -> FastAPI:
    """Build a FastAPI application with its own chat runtime.

    Args:
        config: Settings to use; defaults to ``get_config()`` at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        settings = config or get_config()

        # Apply configured log level to root logger so that
        # `logging.level: "debug"` in chathub.settings.yaml activates DEBUG output.
        configured_level = getattr(logging, settings.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", settings.logging.level.upper())

        app.state.runtime = ChatRuntime.from_config(settings)
        logger.info(f"Available rooms: {app.state.runtime.directory.names()}")

        yield  # Application runs here

        # Shutdown
        app.state.runtime.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Chathub API",
        description="Real-time multi-room chat coordinator",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Register all routers
    app.include_router(chat_router)
    app.include_router(rooms_router)
    app.include_router(messages_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    """Run the server with uvicorn using the configured host and port."""
    settings = get_config()
    logger.info(f"Server running on {settings.server.host}:{settings.server.port}")
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    run()

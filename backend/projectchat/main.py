"""Project chat backend application.

This is the main entry point for the project chat service: the real-time
conversation layer between homeowners and contractors on a project.

Modules:
    - chat: WebSocket protocol, rooms, typing presence, message REST API
    - quotes: Quote submission mirrored into the chat as quote messages
    - storage: DuckDB-backed messages, quotes, users and projects
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .chat.hub import ChatHub
from .chat.router import router as chat_router
from .config import AppSettings, get_config
from .quotes.router import router as quotes_router
from .quotes.service import QuoteService
from .storage import (
    DuckDBMessageStore,
    ProjectDirectory,
    QuoteStore,
    UserDirectory,
    open_database,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "websockets",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application.

    Storage and the chat hub are created in the lifespan, so nothing touches
    the database until the app starts serving.

    Args:
        settings: Settings to use; defaults to ``get_config()``.
    """
    settings = settings or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Apply configured log level to the root logger so that
        # `logging.level: "debug"` in projectchat.settings.yaml activates DEBUG output.
        configured_level = getattr(logging, settings.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", settings.logging.level.upper())

        conn = open_database(settings.storage.db_path)
        hub = ChatHub(
            messages=DuckDBMessageStore(conn),
            users=UserDirectory(conn),
            projects=ProjectDirectory(conn),
            settings=settings.chat,
        )
        quote_service = QuoteService(QuoteStore(conn), hub)
        app.state.chat_hub = hub
        app.state.quote_service = quote_service

        # Quotes committed while their chat notification failed.
        await quote_service.announce_pending()

        logger.info(
            "Chat ready on ws://%s:%s/ws (typing timeout %ss, outbox %d/%s)",
            settings.server.host,
            settings.server.port,
            settings.chat.typing_timeout_seconds,
            settings.chat.outbound_queue_size,
            settings.chat.overflow_policy,
        )

        yield  # Application runs here

        # Shutdown
        await hub.aclose()
        conn.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Project Chat API",
        description="Real-time project chat between homeowners and contractors",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register all routers
    app.include_router(chat_router)
    app.include_router(quotes_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()

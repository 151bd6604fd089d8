"""Fellowship Chat backend application.

Realtime messaging for a church community: a community room, a staff-only
admin room and private one-to-one conversations, with presence, typing
indicators, delivery and read receipts, and reactions.

Modules:
    - identity: bearer credential verification (JWT)
    - messages: message store, room routing, receipts, reactions, HTTP routes
    - realtime: WebSocket sessions, presence registry, typing tracker

Run:
    uvicorn fellowship_chat.main:app --reload
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fellowship_chat import __version__
from fellowship_chat.config import AppSettings, get_config
from fellowship_chat.deps import build_services
from fellowship_chat.errors import install_error_handlers
from fellowship_chat.messages.router import router as messages_router
from fellowship_chat.realtime.router import router as realtime_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "urllib3",
    "httpx",
    "httpcore",
    "websockets",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppSettings] = None) -> FastAPI:
    """Build the application around one set of chat services.

    Args:
        config: Settings to use; loaded from the YAML files when omitted.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        settings = config or get_config()

        configured_level = getattr(logging, settings.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", settings.logging.level.upper())

        app.state.services = build_services(settings)
        logger.info(
            f"Fellowship Chat ready on http://{settings.server.host}:{settings.server.port}"
        )

        yield  # Application runs here

        # Shutdown
        await app.state.services.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Fellowship Chat API",
        description="Realtime messaging for the church community",
        version=__version__,
        lifespan=lifespan,
    )

    origins = (config or get_config()).server.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    app.include_router(messages_router)
    app.include_router(realtime_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()

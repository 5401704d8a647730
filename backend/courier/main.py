"""Courier Backend Application.

This is the main entry point for the Courier chat service: account
signup/login, direct-message history, and live message delivery over
WebSockets.

Modules:
    - chat: Room registry, connection lifecycle and delivery engine (WebSocket)
    - messages: DuckDB message store and history endpoints
    - auth: bcrypt/JWT accounts
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from courier.auth.router import router as auth_router
from courier.chat.hub import get_hub
from courier.chat.router import router as chat_router
from courier.config import get_config
from courier.messages.router import router as messages_router

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
    "multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in courier.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    hub = get_hub()
    logger.info(
        "Chat hub ready (enforce_sender_identity=%s, require_join_token=%s)",
        hub.enforce_sender_identity,
        hub.token_verifier is not None,
    )

    yield  # Application runs here

    # Shutdown
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Courier API",
    description="Real-time direct messaging backend",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(messages_router)
app.include_router(auth_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Server status plus the number of identities with a live
        connection.
    """
    return {
        "status": "ok",
        "onlineIdentities": len(get_hub().registry.online_identities()),
    }

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers.chat import chat_router
from routers.health import health_router
from routers.rooms import rooms_router
from relay.hub import RelayHub
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def create_app(hub: Optional[RelayHub] = None) -> FastAPI:
    """Build the application around one relay hub (a fresh one unless given)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info(f"Shutting down relay, closing {app.state.hub.session_count} session(s)")
        await app.state.hub.shutdown()

    app = FastAPI(title="Ephemeral Chat Relay", lifespan=lifespan)
    app.state.hub = hub or RelayHub()

    # Configure CORS to allow all origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(rooms_router)
    app.include_router(health_router)
    app.include_router(chat_router)

    logger.info("FastAPI application initialized")
    return app


app = create_app()

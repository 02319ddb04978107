"""FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.app.api.routes.chat import router as chat_router
from backend.app.api.routes.documents import router as documents_router
from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.api.routes.sessions import router as sessions_router
from backend.app.config import get_settings
from backend.app.docs.dispatcher import get_dispatcher
from backend.app.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Configure logging on startup; let in-flight ingestion runs finish on shutdown."""
    configure_logging(get_settings().log_level)
    yield
    dispatcher = get_dispatcher()
    if dispatcher.active_count:
        logger.info(f"Waiting for {dispatcher.active_count} ingestion runs to finish")
    await dispatcher.drain()


app = FastAPI(title="Document Q&A API", version="0.1.0", lifespan=lifespan)

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(documents_router, tags=["documents"])
app.include_router(chat_router, tags=["chat"])
app.include_router(sessions_router, tags=["sessions"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Document Q&A API", "version": "0.1.0"}

"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from respawn_console import __version__
from respawn_console.app.config import API_PREFIX, ensure_directories
from respawn_console.app.routers import context_limits, events, hooks, logs, presets, respawn
from respawn_console.app.services.context_limits_service import ContextLimitsService
from respawn_console.app.services.logging_service import get_logger, setup_logging
from respawn_console.app.services.respawn_service import RespawnService

# Configure logging with session-aware file logging
setup_logging(level=logging.DEBUG if os.environ.get("RESPAWN_CONSOLE_DEBUG") == "1" else logging.INFO)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    # Startup
    logger.info("Starting Respawn Console...")
    ensure_directories()
    respawn_service = RespawnService()
    context_limits_service = ContextLimitsService(respawn_service.port, respawn_service.events, respawn_service.is_busy)
    context_limits_service.start()
    # Store on app state for access from routers
    app.state.respawn_service = respawn_service
    app.state.context_limits_service = context_limits_service
    logger.info("Respawn Console started successfully")
    yield
    # Shutdown
    logger.info("Shutting down Respawn Console...")
    context_limits_service.shutdown()
    await app.state.respawn_service.shutdown()


app = FastAPI(
    title="Respawn Console API",
    description="Keeps CLI coding agents working across turns: idle detection, scripted respawn cycles, circuit breaking",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(respawn.router, prefix=API_PREFIX)
app.include_router(presets.router, prefix=API_PREFIX)
app.include_router(hooks.router, prefix=API_PREFIX)
app.include_router(context_limits.router, prefix=API_PREFIX)
app.include_router(events.router, prefix=API_PREFIX)
app.include_router(logs.router, prefix=API_PREFIX)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}

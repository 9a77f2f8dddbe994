"""FastAPI application entry point for the live dependency graph backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from api.routes import set_sync_manager as set_routes_sync_manager
from api.websocket import (
    set_sync_manager as set_websocket_sync_manager,
)
from api.websocket import (
    websocket_router,
)
from config import configure_logging, settings
from events import Broadcaster
from metrics import PollMetricsCollector
from state_store import StateStore
from sync_manager import SyncManager
from tracker import TrackerClient, TrackerError, TrackerGateway

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


def create_sync_manager() -> SyncManager:
    """Build the tracker, store, broadcaster and sync manager from settings."""
    gateway = TrackerGateway(
        executable=settings.bd_executable,
        cwd=settings.tracker_workdir,
        timeout_seconds=settings.cli_timeout_seconds,
        max_output_bytes=settings.cli_max_output_bytes,
    )
    client = TrackerClient(gateway)
    store = StateStore()
    broadcaster = Broadcaster(snapshot_reader=store.get)
    return SyncManager(
        client,
        store,
        broadcaster,
        PollMetricsCollector(),
        poll_interval_seconds=settings.poll_interval_seconds,
        detect_changes=settings.poll_skip_unchanged,
        refresh_wait_timeout_seconds=settings.refresh_wait_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Builds the sync manager, starts polling the configured roots, and stops
    every poller and subscriber on shutdown.

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # Startup
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        tracker_workdir=settings.tracker_workdir,
        poll_interval_seconds=settings.poll_interval_seconds,
    )

    sync_manager = create_sync_manager()

    set_routes_sync_manager(sync_manager)
    set_websocket_sync_manager(sync_manager)
    app.state.sync_manager = sync_manager

    for root_id in settings.tracked_roots:
        try:
            await sync_manager.track_root(root_id)
        except TrackerError as e:
            # Keep the API available; the root can be added later via POST /api/roots.
            logger.warning("initial_root_track_failed", root_id=root_id, code=e.code, error=str(e))

    logger.info("application_started", tracked_roots=len(sync_manager.tracked_roots()))

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await app.state.sync_manager.shutdown()
    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Beads Live Graph",
    description="Live dependency-graph view of a beads issue tracker, "
    "with progress metrics and viewer-initiated mutations.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["graph"])

# Include WebSocket routes
app.include_router(websocket_router, tags=["websocket"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint that points to API documentation.

    Returns:
        A welcome message with documentation URL.
    """
    return {
        "message": "Beads Live Graph API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )

"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The lifespan owns the live-update pipeline:

    registry → broadcaster → feed.start() → dispatch task

The change feed is NOT optional: if it cannot subscribe, startup fails.
Serving sockets that never receive anything would hide the outage.
"""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from plantvibes import __version__
from plantvibes.api import api_router
from plantvibes.config import settings
from plantvibes.exceptions import ChangeFeedError
from plantvibes.realtime.broadcaster import ChangeBroadcaster
from plantvibes.realtime.feed import build_change_feed
from plantvibes.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` at shutdown.
    """
    logger.info(
        "plantvibes.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        change_feed=settings.change_feed_backend,
    )

    from plantvibes.db.engine import async_session_factory, engine

    loader = None
    if settings.enrich_update_events:
        from plantvibes.realtime.documents import SqlDocumentLoader
        loader = SqlDocumentLoader(async_session_factory)

    registry = ConnectionRegistry()
    broadcaster = ChangeBroadcaster(
        registry,
        document_loader=loader,
        send_timeout=settings.ws_send_timeout_seconds,
    )
    feed = build_change_feed(settings)

    try:
        await feed.start()
    except ChangeFeedError as e:
        logger.error("plantvibes.change_feed_failed", error=str(e))
        await engine.dispose()
        raise

    app.state.registry = registry
    app.state.broadcaster = broadcaster
    app.state.feed = feed
    dispatch_task = asyncio.create_task(broadcaster.run(feed))

    yield

    # Shutdown
    logger.info("plantvibes.shutdown", connections=len(registry))

    # Stopping the feed ends the dispatch loop after queued events
    await feed.stop()
    try:
        await asyncio.wait_for(dispatch_task, timeout=5.0)
    except asyncio.TimeoutError:
        dispatch_task.cancel()

    await broadcaster.close_all()
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="PlantVibes",
        description="Real-time change notifications for plants, users and vibrations",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from plantvibes.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: plantvibes.main:app)
app = create_app()

"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running, its
dependencies are reachable, and reports the live-update counters.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from plantvibes import __version__
from plantvibes.config import settings
from plantvibes.db.engine import engine

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health, dependency connectivity and realtime stats."""
    checks = {"server": "ok", "version": __version__}

    # Check Postgres
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    # Check Redis (only when it carries the change feed)
    if settings.change_feed_backend == "redis":
        try:
            from redis.asyncio import from_url

            r = from_url(settings.redis_url)
            await r.ping()
            await r.aclose()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    broadcaster = getattr(request.app.state, "broadcaster", None)
    feed = getattr(request.app.state, "feed", None)
    realtime = broadcaster.get_stats() if broadcaster is not None else {}
    realtime["feed"] = settings.change_feed_backend
    realtime["feed_running"] = bool(feed is not None and feed.running)

    return {"status": status, **checks, "realtime": realtime}

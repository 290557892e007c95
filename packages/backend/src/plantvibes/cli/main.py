"""PlantVibes CLI — run the server, inspect live-update stats, publish changes.

Usage:
    plantvibes serve                                  # Run the API + WebSocket server
    plantvibes status                                 # Health + realtime counters
    plantvibes publish insert plant --data '{"id": "p1", "name": "Rose"}'
    plantvibes publish update plant --id p1 --data '{"name": "Tulip"}'
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("PLANTVIBES_API_URL", DEFAULT_API_URL).rstrip("/")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=_api_url(), timeout=10.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_json_object(ctx, param, value: Optional[str]) -> Optional[dict]:
    """Click callback: --data must be a JSON object."""
    if value is None:
        return None
    try:
        data = json.loads(value)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON ({e})")
    if not isinstance(data, dict):
        raise click.BadParameter("must be a JSON object")
    return data


def _status_color(status: str) -> str:
    colors = {
        "healthy": "green",
        "degraded": "yellow",
        "ok": "green",
    }
    return colors.get(status, "red")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version="0.1.0", prog_name="plantvibes")
def main():
    """PlantVibes — real-time change notifications for plants and vibrations."""


# ---------------------------------------------------------------------------
# plantvibes serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", default=None, help="Bind address (default: PLANTVIBES_HOST)")
@click.option("--port", type=int, default=None, help="Port (default: PLANTVIBES_PORT)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and WebSocket server with uvicorn."""
    import uvicorn

    from plantvibes.config import settings

    uvicorn.run(
        "plantvibes.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# plantvibes status
# ---------------------------------------------------------------------------


@main.command()
def status():
    """Show server health and live-update counters."""
    asyncio.run(_status_impl())


async def _status_impl():
    async with _client() as c:
        try:
            r = await c.get("/api/v1/health")
            r.raise_for_status()
        except httpx.HTTPError as e:
            click.secho(f"Server unreachable at {_api_url()}: {e}", fg="red", err=True)
            sys.exit(1)
        health = r.json()

    click.secho(
        f"{health['status']}  (v{health.get('version', '?')})",
        fg=_status_color(health["status"]),
        bold=True,
    )
    for dep in ("postgres", "redis"):
        if dep in health:
            click.echo(f"  {dep:<10} ", nl=False)
            click.secho(health[dep], fg=_status_color(health[dep]))

    realtime = health.get("realtime", {})
    click.echo("")
    click.secho("Realtime", bold=True)
    for key in (
        "feed",
        "feed_running",
        "connections",
        "events",
        "frames_sent",
        "send_failures",
        "malformed_messages",
        "started_at",
    ):
        click.echo(f"  {key:<20} {realtime.get(key, '—')}")


# ---------------------------------------------------------------------------
# plantvibes publish
# ---------------------------------------------------------------------------


@main.command()
@click.argument("op", type=click.Choice(["insert", "update", "delete"]))
@click.argument("entity")
@click.option("--id", "document_id", help="Document id (required for update)")
@click.option("--data", callback=_parse_json_object,
              help="JSON object: the document (insert/delete) or changed fields (update)")
@click.option("--channel", default=None, help="Redis channel (default: PLANTVIBES_REDIS_CHANGE_CHANNEL)")
def publish(op: str, entity: str, document_id: Optional[str],
            data: Optional[dict], channel: Optional[str]):
    """Publish a change record to Redis (picked up by the redis change feed)."""
    from plantvibes.realtime.pubsub import build_change_record

    try:
        record = build_change_record(
            op,
            entity,
            document_id=document_id,
            document=data if op != "update" else None,
            changes=data if op == "update" else None,
        )
    except ValueError as e:
        raise click.UsageError(str(e))

    receivers = asyncio.run(_publish_impl(record, channel))
    click.echo(json.dumps(record))
    click.secho(f"Delivered to {receivers} subscriber(s)", fg="green" if receivers else "yellow")


async def _publish_impl(record: dict, channel: Optional[str]) -> int:
    import redis.asyncio as aioredis

    from plantvibes.config import settings
    from plantvibes.realtime.pubsub import publish_change

    r = aioredis.from_url(settings.redis_url)
    try:
        return await publish_change(r, channel or settings.redis_change_channel, record)
    finally:
        await r.aclose()


if __name__ == "__main__":
    main()

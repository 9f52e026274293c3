"""contentlab-live CLI — watch and exercise a project's realtime stream.

Usage:
    contentlab-live watch proj-1                         # Follow live events over Redis
    contentlab-live watch proj-1 --transport polling     # Follow via the HTTP poll endpoint
    contentlab-live watch proj-1 --kind alert            # Only print alerts
    contentlab-live publish proj-1 alert --payload '{"severity": "critical", "title": "Rank drop"}'
    contentlab-live config                               # Effective settings
"""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import click
from pydantic import ValidationError

from contentlab_realtime import __version__
from contentlab_realtime.config import settings
from contentlab_realtime.events.types import (
    ALERT,
    ANALYSIS_COMPLETE,
    ANALYSIS_UPDATE,
    CONNECTION_STATE,
    METRICS_UPDATE,
    resolve_kind,
)
from contentlab_realtime.logging_config import configure_logging
from contentlab_realtime.realtime.client import (
    ClientHandlers,
    ClientOptions,
    RealtimeUpdateClient,
)
from contentlab_realtime.realtime.polling import PollingChannelProvider
from contentlab_realtime.realtime.provider import ChannelProvider
from contentlab_realtime.realtime.pubsub import (
    RedisChannelProvider,
    connect_redis,
    publish_event,
)
from contentlab_realtime.schemas.events import PAYLOAD_MODELS, Event

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _severity_color(severity: str) -> str:
    """Map alert severities and connection statuses to click colors."""
    colors = {
        "critical": "red",
        "high": "magenta",
        "medium": "yellow",
        "low": "cyan",
        "info": "white",
        "connected": "green",
        "connecting": "yellow",
        "error": "red",
        "failed": "red",
        "closed": "white",
    }
    return colors.get(severity, "white")


def format_event(event: Event) -> str:
    """One-line human rendering of an event."""
    p = event.payload
    if event.kind == ALERT:
        severity = click.style(p.severity.upper(), fg=_severity_color(p.severity), bold=True)
        competitor = f" ({p.competitor_id})" if p.competitor_id else ""
        return f"{severity} {p.title}{competitor}"
    if event.kind == ANALYSIS_UPDATE:
        eta = f", ~{p.estimated_time_remaining:.0f}s left" if p.estimated_time_remaining is not None else ""
        return f"job {p.job_id}: {p.status} {p.progress:.0f}%{eta}"
    if event.kind == ANALYSIS_COMPLETE:
        return f"job {p.job_id}: {click.style(p.status, fg='green' if p.status == 'completed' else 'red')}"
    if event.kind == METRICS_UPDATE:
        values = ", ".join(f"{k}={v}" for k, v in sorted(p.metrics.items()))
        target = p.competitor_id or "project"
        return f"metrics for {target}: {values or '(empty)'}"
    if event.kind == CONNECTION_STATE:
        gap = " (events may have been missed)" if p.gap else ""
        return f"connection {p.state}{gap}"
    return f"{event.kind}: {event.payload.model_dump_json()}"


def _build_provider(transport: str, redis_url: Optional[str], api_url: Optional[str]) -> ChannelProvider:
    if transport == "polling":
        return PollingChannelProvider(base_url=api_url)
    return RedisChannelProvider(url=redis_url)


def _parse_payload(kind: str, payload: Optional[str]) -> dict:
    """Validate a --payload argument against the kind's schema."""
    try:
        data = json.loads(payload) if payload else {}
    except json.JSONDecodeError as e:
        click.secho(f"Error: --payload is not valid JSON ({e.msg})", fg="red", err=True)
        sys.exit(1)
    if not isinstance(data, dict):
        click.secho("Error: --payload must be a JSON object", fg="red", err=True)
        sys.exit(1)
    try:
        PAYLOAD_MODELS[kind].model_validate(data)
    except ValidationError as e:
        click.secho(f"Error: invalid {kind} payload:\n{e}", fg="red", err=True)
        sys.exit(1)
    return data


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="contentlab-live")
@click.option("--log-level", default=None, help="Override CONTENTLAB_LOG_LEVEL")
def main(log_level: Optional[str]):
    """ContentLab live updates — follow and publish realtime events."""
    configure_logging(log_level or settings.log_level, json_output=settings.log_json)


# ---------------------------------------------------------------------------
# contentlab-live watch
# ---------------------------------------------------------------------------


@main.command()
@click.argument("scope")
@click.option("--transport", type=click.Choice(["redis", "polling"]), default="redis",
              show_default=True, help="How to receive events")
@click.option("--redis-url", help="Redis URL (defaults to CONTENTLAB_REDIS_URL)")
@click.option("--api-url", help="Dashboard URL for polling (defaults to CONTENTLAB_API_URL)")
@click.option("--kind", "kinds", multiple=True, help="Only print these kinds (repeatable)")
def watch(scope: str, transport: str, redis_url: Optional[str], api_url: Optional[str],
          kinds: tuple[str, ...]):
    """Print live events for SCOPE until interrupted."""
    wanted = set()
    for k in kinds:
        resolved = resolve_kind(k)
        if resolved is None:
            click.secho(f"Error: unknown kind {k!r}", fg="red", err=True)
            sys.exit(1)
        wanted.add(resolved)

    try:
        asyncio.run(_watch_impl(scope, _build_provider(transport, redis_url, api_url), wanted))
    except KeyboardInterrupt:
        click.echo()
        click.echo("Stopped.")


async def _watch_impl(
    scope: str,
    provider: ChannelProvider,
    wanted: set[str],
    options: Optional[ClientOptions] = None,
    tick: float = 1.0,
):
    def on_event(event: Event):
        if wanted and event.kind not in wanted:
            return
        click.echo(f"  {event.kind:18s}  {format_event(event)}")

    def on_reconnect_attempt(n: int):
        click.secho(f"  reconnecting (attempt {n})...", fg="yellow")

    client = RealtimeUpdateClient(
        scope,
        provider,
        ClientHandlers(
            on_event=on_event,
            on_connect=lambda: click.secho(f"Connected to {scope} via {provider.name}", fg="green"),
            on_disconnect=lambda: click.secho("Disconnected", fg="yellow"),
            on_reconnect_attempt=on_reconnect_attempt,
        ),
        options or ClientOptions.from_settings(),
    )

    result = await client.connect()
    if not result.ok:
        click.secho(f"Initial connection failed ({result.error}); retrying in background", fg="red")

    try:
        while True:
            await asyncio.sleep(tick)
            if client.status == "failed":
                click.secho("Giving up: reconnect attempts exhausted", fg="red", err=True)
                break
    finally:
        await client.disconnect()
        if isinstance(provider, RedisChannelProvider):
            await provider.aclose()


# ---------------------------------------------------------------------------
# contentlab-live publish
# ---------------------------------------------------------------------------


@main.command()
@click.argument("scope")
@click.argument("kind")
@click.option("--payload", help="JSON object for the event payload")
@click.option("--redis-url", help="Redis URL (defaults to CONTENTLAB_REDIS_URL)")
def publish(scope: str, kind: str, payload: Optional[str], redis_url: Optional[str]):
    """Publish one KIND event to SCOPE (useful for testing dashboards)."""
    resolved = resolve_kind(kind)
    if resolved is None:
        click.secho(f"Error: unknown kind {kind!r}", fg="red", err=True)
        sys.exit(1)
    data = _parse_payload(resolved, payload)
    receivers = asyncio.run(_publish_impl(scope, resolved, data, redis_url))
    click.secho(f"Published {resolved} to {scope} ({receivers} subscriber(s))", fg="green")


async def _publish_impl(scope: str, kind: str, data: dict, redis_url: Optional[str]) -> int:
    redis = connect_redis(redis_url)
    try:
        return await publish_event(redis, scope, kind, data)
    finally:
        await redis.aclose()


# ---------------------------------------------------------------------------
# contentlab-live config
# ---------------------------------------------------------------------------


@main.command()
def config():
    """Show effective settings (secrets hidden)."""
    values = settings.model_dump(exclude={"api_token"})
    width = max(len(k) for k in values)
    for key, value in values.items():
        click.echo(f"  {key.ljust(width)}  {value}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()

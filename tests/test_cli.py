"""CLI tests.

Learn: click's CliRunner invokes commands in-process. Redis is patched
out at the CLI module boundary, so publish is tested without a server.
watch is driven through _watch_impl with a scripted provider.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from conftest import FakeProvider
from contentlab_realtime.cli.main import _watch_impl, format_event, main
from contentlab_realtime.realtime.backoff import BackoffPolicy
from contentlab_realtime.realtime.client import ClientOptions
from contentlab_realtime.schemas.events import (
    AlertPayload,
    AnalysisUpdatePayload,
    ConnectionStatePayload,
    Event,
    MetricsUpdatePayload,
)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_redis():
    redis = MagicMock()
    redis.aclose = AsyncMock()
    with patch("contentlab_realtime.cli.main.connect_redis", return_value=redis), \
         patch("contentlab_realtime.cli.main.publish_event", new=AsyncMock(return_value=3)) as publish:
        yield redis, publish


# ─── publish ─────────────────────────────────────────────


def test_publish_alert(runner, fake_redis):
    redis, publish = fake_redis

    result = runner.invoke(main, [
        "publish", "proj-1", "alert",
        "--payload", '{"severity": "critical", "title": "Rank drop"}',
    ])

    assert result.exit_code == 0, result.output
    assert "Published alert to proj-1 (3 subscriber(s))" in result.output
    publish.assert_awaited_once_with(redis, "proj-1", "alert", {"severity": "critical", "title": "Rank drop"})
    redis.aclose.assert_awaited_once()


def test_publish_resolves_legacy_kind(runner, fake_redis):
    _, publish = fake_redis

    result = runner.invoke(main, ["publish", "proj-1", "job-progress", "--payload", '{"jobId": "J1", "progress": 10}'])

    assert result.exit_code == 0, result.output
    assert publish.await_args.args[2] == "analysis_update"


def test_publish_unknown_kind(runner, fake_redis):
    _, publish = fake_redis
    result = runner.invoke(main, ["publish", "proj-1", "competitor_change"])

    assert result.exit_code == 1
    assert "unknown kind" in result.output
    publish.assert_not_awaited()


@pytest.mark.parametrize("payload", [
    "{not json",
    "[1, 2]",
    '{"severity": "critical"}',
])
def test_publish_rejects_bad_payload(runner, fake_redis, payload):
    _, publish = fake_redis
    result = runner.invoke(main, ["publish", "proj-1", "alert", "--payload", payload])

    assert result.exit_code == 1
    assert "Error" in result.output
    publish.assert_not_awaited()


# ─── watch / config ──────────────────────────────────────


class DroppingProvider(FakeProvider):
    """Opens, pushes a few events, then drops. Later attempts are refused."""

    def __init__(self, messages):
        super().__init__()
        self.script = ["open", "raise"]
        self.messages = messages

    async def subscribe(self, scope_id, listener):
        sub = await super().subscribe(scope_id, listener)
        for raw in self.messages:
            listener.on_message(raw)
        listener.on_close("server restart")
        return sub


@pytest.mark.asyncio
async def test_watch_prints_filtered_events_and_gives_up(capsys):
    provider = DroppingProvider([
        {"kind": "alert", "payload": {"severity": "critical", "title": "Rank drop"}},
        {"kind": "metrics_update", "payload": {"metrics": {"da": 50}}},
    ])
    options = ClientOptions(
        backoff=BackoffPolicy(base_delay=0.01, max_attempts=1),
        connect_timeout=None,
    )

    await _watch_impl("proj-1", provider, {"alert"}, options=options, tick=0.01)

    out, err = capsys.readouterr()
    assert "Connected to proj-1 via fake" in out
    assert "CRITICAL Rank drop" in out
    assert "metrics for" not in out
    assert "reconnecting (attempt 1)" in out
    assert "Giving up: reconnect attempts exhausted" in err
    assert provider.subscribe_calls == ["proj-1", "proj-1"]


@pytest.mark.asyncio
async def test_watch_without_filter_prints_every_kind(capsys):
    provider = DroppingProvider([
        {"kind": "alert", "payload": {"severity": "low", "title": "New mention"}},
        {"kind": "metrics_update", "payload": {"competitorId": "c1", "metrics": {"da": 50}}},
    ])
    options = ClientOptions(backoff=BackoffPolicy(max_attempts=0), connect_timeout=None)

    await _watch_impl("proj-1", provider, set(), options=options, tick=0.01)

    out, _ = capsys.readouterr()
    assert "LOW New mention" in out
    assert "metrics for c1: da=50" in out
    assert len(provider.subscribe_calls) == 1


def test_watch_rejects_unknown_kind_filter(runner):
    result = runner.invoke(main, ["watch", "proj-1", "--kind", "nope"])
    assert result.exit_code == 1
    assert "unknown kind 'nope'" in result.output


def test_config_hides_token(runner, monkeypatch):
    monkeypatch.setattr("contentlab_realtime.cli.main.settings.api_token", "s3cret")
    result = runner.invoke(main, ["config"])

    assert result.exit_code == 0
    assert "history_cap" in result.output
    assert "reconnect_max_attempts" in result.output
    assert "s3cret" not in result.output


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


# ─── format_event ────────────────────────────────────────


def test_format_events():
    alert = Event(kind="alert", payload=AlertPayload(severity="high", title="New backlink", competitor_id="c1"), received_at=1.0)
    job = Event(kind="analysis_update", payload=AnalysisUpdatePayload(job_id="J1", progress=40, estimated_time_remaining=12), received_at=1.0)
    metrics = Event(kind="metrics_update", payload=MetricsUpdatePayload(metrics={"da": 50, "backlinks": 10}), received_at=1.0)
    gap = Event(kind="connection_state", payload=ConnectionStatePayload(state="reconnected", gap=True), received_at=1.0)

    assert "HIGH" in format_event(alert) and "New backlink (c1)" in format_event(alert)
    assert format_event(job) == "job J1: processing 40%, ~12s left"
    assert format_event(metrics) == "metrics for project: backlinks=10, da=50"
    assert format_event(gap).startswith("connection reconnected")
    assert "missed" in format_event(gap)

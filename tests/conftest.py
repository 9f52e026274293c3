"""Test fixtures — scripted provider, controllable clock and sleep.

Learn: The client is driven entirely through the provider's listener
callbacks, so tests don't need Redis or an HTTP server:

1. FakeProvider records every subscribe() call and, per call, either
   opens immediately, fails, raises, or stays pending for the test to drive.
2. FakeClock makes "recent" windows deterministic.
3. ManualSleep parks reconnect timers until the test releases them,
   and records the delays the backoff asked for.
"""

import asyncio

import pytest

from contentlab_realtime.realtime.backoff import BackoffPolicy
from contentlab_realtime.realtime.client import (
    ClientHandlers,
    ClientOptions,
    RealtimeUpdateClient,
)
from contentlab_realtime.realtime.provider import ChannelProvider, Subscription


class FakeSubscription(Subscription):
    def __init__(self, scope_id, listener):
        self.scope_id = scope_id
        self.listener = listener
        self.close_calls = 0

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    async def close(self) -> None:
        self.close_calls += 1


class FakeProvider(ChannelProvider):
    """Scripted provider.

    Behaviors: "open" (on_open inside subscribe), "error" (on_error inside
    subscribe), "raise" (subscribe raises), "pending" (nothing happens).
    """

    name = "fake"

    def __init__(self, behavior: str = "open"):
        self.behavior = behavior
        self.script: list[str] = []
        self.subscribe_calls: list[str] = []
        self.subscriptions: list[FakeSubscription] = []

    async def subscribe(self, scope_id, listener):
        self.subscribe_calls.append(scope_id)
        behavior = self.script.pop(0) if self.script else self.behavior
        if behavior == "raise":
            raise ConnectionRefusedError("connection refused")
        sub = FakeSubscription(scope_id, listener)
        self.subscriptions.append(sub)
        if behavior == "open":
            listener.on_open()
        elif behavior == "error":
            listener.on_error(ConnectionError("handshake failed"))
        return sub

    @property
    def current(self) -> FakeSubscription:
        return self.subscriptions[-1]

    def deliver(self, raw) -> None:
        self.current.listener.on_message(raw)


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualSleep:
    def __init__(self):
        self.delays: list[float] = []
        self._waiters: list[asyncio.Future] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        await fut

    @property
    def pending(self) -> int:
        return sum(1 for f in self._waiters if not f.done())

    def release(self) -> None:
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)


async def settle(rounds: int = 10) -> None:
    """Let scheduled tasks run a few loop iterations."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ListenerSpy:
    """Stands in for the client when testing a provider on its own."""

    def __init__(self):
        self.calls: list[tuple] = []

    def on_open(self):
        self.calls.append(("open",))

    def on_message(self, raw):
        self.calls.append(("message", raw))

    def on_error(self, exc):
        self.calls.append(("error", type(exc).__name__))

    def on_close(self, reason):
        self.calls.append(("close", reason))


class Recorder:
    """Collects callback invocations in order."""

    def __init__(self):
        self.calls: list[tuple] = []

    def handlers(self) -> ClientHandlers:
        return ClientHandlers(
            on_event=lambda e: self.calls.append(("event", e.kind)),
            on_connect=lambda: self.calls.append(("connect",)),
            on_disconnect=lambda: self.calls.append(("disconnect",)),
            on_reconnect_attempt=lambda n: self.calls.append(("reconnect_attempt", n)),
        )

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return ManualSleep()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def options():
    return ClientOptions(
        history_cap=5,
        alert_cap=3,
        completed_analysis_cap=2,
        backoff=BackoffPolicy(base_delay=1.0, multiplier=2.0, max_delay=30.0, max_attempts=3),
        connect_timeout=None,
    )


@pytest.fixture
def make_client(provider, clock, sleeper, recorder, options):
    """Factory so tests can override scope, provider or options."""

    def _make(scope_id="proj-1", **overrides):
        return RealtimeUpdateClient(
            scope_id,
            overrides.pop("provider", provider),
            overrides.pop("handlers", recorder.handlers()),
            overrides.pop("options", options),
            clock=overrides.pop("clock", clock),
            sleep=overrides.pop("sleep", sleeper),
        )

    return _make

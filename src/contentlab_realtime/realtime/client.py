"""RealtimeUpdateClient — one scope's live stream turned into readable state.

Learn: The client owns three things for its scope: the bounded event
history, the connection state, and the live job map. Providers push raw
messages in; consumers read frozen snapshots out. Nothing a consumer
holds can change underneath it.

Connection lifecycle:

    closed --connect()--> connecting --open--> connected
    connecting --error--> error --backoff--> connecting (retry)
    connected --close/error--> error
    error --attempts exhausted--> failed --reconnect()--> connecting
    any --disconnect()--> closed

Every subscription attempt gets a generation number. Teardown (failure,
drop, disconnect) bumps the generation, so callbacks from a subscription
the client already gave up on are ignored instead of resurrecting it.

Transport failures never raise out of connect()/disconnect(); they show
up as state, counters, and callbacks.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from itertools import chain
from typing import Any, Awaitable, Callable, Deque, Optional

import structlog

from contentlab_realtime.config import Settings, settings as default_settings
from contentlab_realtime.events.parser import (
    Heartbeat,
    MalformedMessageError,
    parse_message,
)
from contentlab_realtime.events.types import (
    ALERT,
    ANALYSIS_COMPLETE,
    ANALYSIS_UPDATE,
    CONNECTION_STATE,
    METRICS_UPDATE,
)
from contentlab_realtime.realtime.backoff import BackoffPolicy
from contentlab_realtime.realtime.history import EventHistory
from contentlab_realtime.realtime.jobs import JobTracker
from contentlab_realtime.realtime.provider import ChannelProvider, Subscription
from contentlab_realtime.schemas.events import ConnectionStatePayload, Event
from contentlab_realtime.schemas.status import (
    CLOSED,
    CONNECTED,
    CONNECTING,
    ERROR,
    FAILED,
    ConnectionState,
    ConnectResult,
    LiveJobStatus,
)

logger = structlog.get_logger()

EventHandler = Callable[[Event], None]


@dataclass
class ClientHandlers:
    """Optional callbacks. All run synchronously on the event loop."""
    on_event: Optional[EventHandler] = None
    on_connect: Optional[Callable[[], None]] = None
    on_disconnect: Optional[Callable[[], None]] = None
    on_reconnect_attempt: Optional[Callable[[int], None]] = None

    # Kind-specific, fired after on_event
    on_alert: Optional[EventHandler] = None
    on_analysis_update: Optional[EventHandler] = None
    on_analysis_complete: Optional[EventHandler] = None
    on_metrics_update: Optional[EventHandler] = None


@dataclass
class ClientOptions:
    history_cap: int = 50
    alert_cap: int = 20
    completed_analysis_cap: int = 10
    job_status_cap: Optional[int] = None
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    connect_timeout: Optional[float] = 10.0
    heartbeat_timeout: Optional[float] = None

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "ClientOptions":
        s = s or default_settings
        return cls(
            history_cap=s.history_cap,
            alert_cap=s.alert_cap,
            completed_analysis_cap=s.completed_analysis_cap,
            job_status_cap=s.job_status_cap,
            backoff=BackoffPolicy(
                base_delay=s.reconnect_base_delay,
                multiplier=s.reconnect_multiplier,
                max_delay=s.reconnect_max_delay,
                max_attempts=s.reconnect_max_attempts,
            ),
            connect_timeout=s.connect_timeout,
            heartbeat_timeout=s.heartbeat_timeout,
        )


class _SubscriptionListener:
    """Binds provider callbacks to one attempt's generation."""

    def __init__(self, client: "RealtimeUpdateClient", generation: int):
        self._client = client
        self._generation = generation

    def on_open(self) -> None:
        self._client._handle_open(self._generation)

    def on_message(self, raw: Any) -> None:
        self._client._handle_message(self._generation, raw)

    def on_error(self, exc: BaseException) -> None:
        self._client._handle_lost(self._generation, f"{type(exc).__name__}: {exc}")

    def on_close(self, reason: str) -> None:
        self._client._handle_lost(self._generation, f"closed: {reason}")


class RealtimeUpdateClient:
    """Live update client for a single scope.

    One instance per consumer: clear() and the derived views are scoped to
    the instance. Consumers that need independent views should build
    independent clients for the same scope.
    """

    def __init__(
        self,
        scope_id: Optional[str],
        provider: ChannelProvider,
        handlers: Optional[ClientHandlers] = None,
        options: Optional[ClientOptions] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.scope_id = scope_id or ""
        self.provider = provider
        self.handlers = handlers or ClientHandlers()
        self.options = options or ClientOptions.from_settings()
        self._clock = clock
        self._sleep = sleep
        self._log = logger.bind(scope_id=self.scope_id, provider=provider.name)

        # Derived state
        self._history = EventHistory(self.options.history_cap)
        self._alerts: Deque[Event] = deque(maxlen=self.options.alert_cap)
        self._completed: Deque[Event] = deque(maxlen=self.options.completed_analysis_cap)
        self._jobs = JobTracker(cap=self.options.job_status_cap)
        self._last_stamp = 0.0

        # Connection state
        self._status = CLOSED
        self._reconnect_attempts = 0
        self._last_connected_at: Optional[float] = None
        self._last_error: Optional[str] = None
        self._last_heartbeat_at: Optional[float] = None
        self._dropped_at: Optional[float] = None

        # Lifecycle plumbing
        self._generation = 0
        self._subscription: Optional[Subscription] = None
        self._attempt: Optional[asyncio.Future] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._watchdog: Optional[asyncio.TimerHandle] = None
        self._cleanup: set[asyncio.Task] = set()

    # ─── Read accessors ──────────────────────────────────

    @property
    def connection_state(self) -> ConnectionState:
        return ConnectionState(
            status=self._status,
            reconnect_attempts=self._reconnect_attempts,
            last_connected_at=self._last_connected_at,
            last_error=self._last_error,
            last_heartbeat_at=self._last_heartbeat_at,
        )

    @property
    def status(self) -> str:
        return self._status

    @property
    def history(self) -> tuple[Event, ...]:
        return self._history.snapshot()

    @property
    def recent_alerts(self) -> tuple[Event, ...]:
        return tuple(self._alerts)

    @property
    def completed_analyses(self) -> tuple[Event, ...]:
        return tuple(self._completed)

    @property
    def live_job_statuses(self) -> dict[str, LiveJobStatus]:
        return self._jobs.snapshot()

    def latest_event(self) -> Optional[Event]:
        return self._history.latest()

    def events_by_kind(self, kind: str, competitor_id: Optional[str] = None) -> tuple[Event, ...]:
        """History entries of `kind`, oldest first.

        competitor_id narrows alerts and metrics to one competitor; kinds
        without a competitor never match a non-None filter.
        """
        return self._history.of_kind(kind, competitor_id)

    def has_recent_critical_alert(self, window: float) -> bool:
        """True if a critical alert arrived within `window` seconds.

        Looks at every alert the client still holds: the history and the
        recent-alerts list. Either one may keep an alert the other evicted.
        """
        now = self._clock()
        candidates = chain(self._history.of_kind(ALERT), self._alerts)
        return any(
            e.payload.severity == "critical" and now - e.received_at <= window
            for e in candidates
        )

    def has_recent_activity(self, window: float) -> bool:
        """True if the newest event arrived within `window` seconds."""
        latest = self._history.latest()
        return latest is not None and self._clock() - latest.received_at <= window

    def clear(self) -> None:
        """Drop history and derived views. Connection is left alone."""
        self._history.clear()
        self._alerts.clear()
        self._completed.clear()
        self._jobs.clear()
        self._log.debug("realtime.cleared")

    # ─── Lifecycle ───────────────────────────────────────

    async def connect(self, timeout: Optional[float] = None) -> ConnectResult:
        """Connect (idempotent). Resolves when the first attempt settles.

        timeout defaults to options.connect_timeout; None there waits for
        the attempt however long it takes.
        """
        if not self.scope_id:
            self._log.debug("realtime.connect_skipped", reason="no scope")
            return ConnectResult(ok=False, status=self._status, error="no scope")

        if self._status == CONNECTED:
            return ConnectResult(ok=True, status=CONNECTED)

        if self._status == CONNECTING and self._attempt is not None:
            attempt = self._attempt
        else:
            self._cancel_reconnect()
            attempt = await self._open_attempt()

        return await self._await_attempt(attempt, timeout)

    async def reconnect(self) -> ConnectResult:
        """Manual retry: reset backoff and attempt once right now."""
        if self._status in (CONNECTING, CONNECTED):
            return await self.connect()
        self._cancel_reconnect()
        self._reconnect_attempts = 0
        self._log.info("realtime.manual_reconnect", previous_status=self._status)
        return await self.connect()

    async def disconnect(self) -> None:
        """Tear down (idempotent). Cancels pending retries and the watchdog."""
        was_closed = self._status == CLOSED
        self._generation += 1
        self._cancel_reconnect()
        self._cancel_watchdog()
        self._dropped_at = None
        self._reconnect_attempts = 0

        subscription, self._subscription = self._subscription, None
        self._set_status(CLOSED)
        self._settle(ConnectResult(ok=False, status=CLOSED, error="disconnected"))

        if subscription is not None:
            await self._close_quietly(subscription)
        if self._cleanup:
            await asyncio.gather(*self._cleanup, return_exceptions=True)

        if not was_closed:
            self._log.info("realtime.disconnected")
            self._fire("on_disconnect", self.handlers.on_disconnect)

    async def __aenter__(self) -> "RealtimeUpdateClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    # ─── Attempts ────────────────────────────────────────

    async def _open_attempt(self) -> asyncio.Future:
        self._generation += 1
        generation = self._generation
        attempt = asyncio.get_running_loop().create_future()
        self._attempt = attempt
        self._set_status(CONNECTING)

        listener = _SubscriptionListener(self, generation)
        try:
            subscription = await self.provider.subscribe(self.scope_id, listener)
        except Exception as e:
            self._handle_lost(generation, f"{type(e).__name__}: {e}")
            return attempt

        if generation != self._generation:
            # Torn down while subscribing (failure, disconnect)
            self._discard(subscription)
        else:
            self._subscription = subscription
        return attempt

    async def _await_attempt(self, attempt: asyncio.Future, timeout: Optional[float]) -> ConnectResult:
        if timeout is None:
            timeout = self.options.connect_timeout
        try:
            return await asyncio.wait_for(asyncio.shield(attempt), timeout)
        except asyncio.TimeoutError:
            self._log.warning("realtime.connect_timeout", timeout=timeout)
            return ConnectResult(ok=False, status=self._status, error="timeout")

    def _settle(self, result: ConnectResult) -> None:
        if self._attempt is not None and not self._attempt.done():
            self._attempt.set_result(result)

    def _schedule_reconnect(self) -> None:
        attempt = self._reconnect_attempts + 1
        backoff = self.options.backoff
        if backoff.exhausted(attempt):
            self._set_status(FAILED)
            self._log.error(
                "realtime.reconnect_exhausted",
                attempts=self._reconnect_attempts,
                last_error=self._last_error,
            )
            return

        delay = backoff.delay_for(attempt)
        self._log.info("realtime.reconnect_scheduled", attempt=attempt, delay=delay)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(attempt, delay))

    async def _reconnect_after(self, attempt: int, delay: float) -> None:
        try:
            await self._sleep(delay)
            self._reconnect_attempts = attempt
            self._fire("on_reconnect_attempt", self.handlers.on_reconnect_attempt, attempt)
            await self._open_attempt()
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ─── Provider callbacks ──────────────────────────────

    def _handle_open(self, generation: int) -> None:
        if generation != self._generation or self._status == CONNECTED:
            return

        now = self._clock()
        gap_reason = self._last_error
        self._reconnect_attempts = 0
        self._last_connected_at = now
        self._last_error = None
        self._set_status(CONNECTED)
        self._arm_watchdog()
        self._settle(ConnectResult(ok=True, status=CONNECTED))

        self._log.info("realtime.connected")
        self._fire("on_connect", self.handlers.on_connect)

        if self._dropped_at is not None:
            marker = ConnectionStatePayload(
                state="reconnected",
                reason=gap_reason,
                gap=True,
                disconnected_at=self._dropped_at,
                reconnected_at=now,
            )
            self._dropped_at = None
            self._ingest(CONNECTION_STATE, marker)

    def _handle_lost(self, generation: int, error: str) -> None:
        """Attempt failed or live connection dropped: tear down, then retry."""
        if generation != self._generation or self._status in (CLOSED, FAILED):
            return

        was_connected = self._status == CONNECTED
        self._generation += 1
        self._cancel_watchdog()
        stale, self._subscription = self._subscription, None
        if stale is not None:
            self._discard(stale)

        if was_connected and self._dropped_at is None:
            self._dropped_at = self._clock()
        self._last_error = error
        self._set_status(ERROR)

        if was_connected:
            self._log.warning("realtime.connection_lost", error=error)
            self._fire("on_disconnect", self.handlers.on_disconnect)
        else:
            self._log.warning("realtime.connect_failed", error=error, attempt=self._reconnect_attempts)

        self._schedule_reconnect()
        self._settle(ConnectResult(ok=False, status=self._status, error=error))

    def _handle_message(self, generation: int, raw: Any) -> None:
        if generation != self._generation:
            return

        try:
            parsed = parse_message(raw)
        except MalformedMessageError as e:
            self._log.warning("realtime.message_dropped", reason=e.reason, kind=e.kind)
            return

        # Only well-formed traffic counts as a sign of life
        self._arm_watchdog()
        if isinstance(parsed, Heartbeat):
            self._last_heartbeat_at = self._clock()
            if not parsed.healthy:
                self._log.warning("realtime.server_degraded", system_status=parsed.system_status)
            return

        kind, payload = parsed
        self._ingest(kind, payload)

    # ─── Ingestion ───────────────────────────────────────

    def _stamp(self) -> float:
        # receivedAt never goes backwards, even if the wall clock does
        now = max(self._clock(), self._last_stamp)
        self._last_stamp = now
        return now

    def _ingest(self, kind: str, payload) -> Event:
        event = Event(kind=kind, payload=payload, received_at=self._stamp())
        self._history.append(event)

        if kind == ALERT:
            self._alerts.append(event)
        elif kind == ANALYSIS_UPDATE:
            self._jobs.apply_update(payload, event.received_at)
        elif kind == ANALYSIS_COMPLETE:
            self._jobs.apply_complete(payload, event.received_at)
            self._completed.append(event)

        self._fire("on_event", self.handlers.on_event, event)
        specific = {
            ALERT: self.handlers.on_alert,
            ANALYSIS_UPDATE: self.handlers.on_analysis_update,
            ANALYSIS_COMPLETE: self.handlers.on_analysis_complete,
            METRICS_UPDATE: self.handlers.on_metrics_update,
        }.get(kind)
        self._fire(f"on_{kind}", specific, event)
        return event

    def _fire(self, name: str, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            self._log.exception("realtime.handler_failed", handler=name)

    # ─── Housekeeping ────────────────────────────────────

    def _set_status(self, status: str) -> None:
        if status != self._status:
            self._log.debug("realtime.status", old=self._status, new=status)
            self._status = status

    def _arm_watchdog(self) -> None:
        timeout = self.options.heartbeat_timeout
        if timeout is None or self._status != CONNECTED:
            return
        self._cancel_watchdog()
        loop = asyncio.get_running_loop()
        self._watchdog = loop.call_later(timeout, self._handle_stale, self._generation)

    def _cancel_watchdog(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None

    def _handle_stale(self, generation: int) -> None:
        self._watchdog = None
        self._log.warning("realtime.heartbeat_timeout", timeout=self.options.heartbeat_timeout)
        self._handle_lost(generation, "heartbeat timeout")

    def _discard(self, subscription: Subscription) -> None:
        task = asyncio.create_task(self._close_quietly(subscription))
        self._cleanup.add(task)
        task.add_done_callback(self._cleanup.discard)

    async def _close_quietly(self, subscription: Subscription) -> None:
        try:
            await subscription.close()
        except Exception as e:
            self._log.warning("realtime.unsubscribe_failed", error=str(e))

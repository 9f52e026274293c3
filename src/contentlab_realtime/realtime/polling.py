"""HTTP polling provider — fallback when pub/sub is unreachable.

Learn: The dashboard's API exposes GET /api/realtime/poll?teamId=&since=&limit=
returning {"data": {"events": [...], "nextSince": "..."}}. Polling it on an
interval turns the endpoint into a stream the client can consume through
the same listener callbacks as the Redis transport.

The subscription counts as open after the first successful poll. Any HTTP
or transport failure ends it with on_error(); reconnecting is the client's
job, not the provider's.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from contentlab_realtime.config import settings
from contentlab_realtime.realtime.provider import (
    ChannelListener,
    ChannelProvider,
    Subscription,
)

logger = structlog.get_logger()

POLL_PATH = "/api/realtime/poll"


class PollResponseError(ValueError):
    """The poll endpoint answered 2xx with a body of the wrong shape."""


class PollingSubscription(Subscription):
    def __init__(
        self,
        client: httpx.AsyncClient,
        scope_id: str,
        listener: ChannelListener,
        *,
        interval: float,
        limit: int,
        scope_param: str,
        owns_client: bool,
        sleep: Callable[[float], Awaitable[None]],
    ):
        self._client = client
        self._scope_id = scope_id
        self._listener = listener
        self._interval = interval
        self._limit = limit
        self._scope_param = scope_param
        self._owns_client = owns_client
        self._sleep = sleep
        self._since: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def poll_once(self) -> list[dict[str, Any]]:
        """Fetch events newer than the cursor and advance it.

        Raises PollResponseError when the body is not the expected shape.
        Non-object entries in the events list are skipped.
        """
        params = {self._scope_param: self._scope_id, "limit": str(self._limit)}
        if self._since:
            params["since"] = self._since

        r = await self._client.get(POLL_PATH, params=params)
        r.raise_for_status()
        body = r.json()
        if not isinstance(body, dict):
            raise PollResponseError(f"expected an object, got {type(body).__name__}")
        data = body.get("data", body)
        if not isinstance(data, dict):
            raise PollResponseError(f"'data' must be an object, got {type(data).__name__}")
        raw_events = data.get("events") or []
        if not isinstance(raw_events, list):
            raise PollResponseError("'events' must be a list")

        events = [e for e in raw_events if isinstance(e, dict)]
        if len(events) != len(raw_events):
            logger.warning(
                "polling.events_skipped",
                scope_id=self._scope_id,
                skipped=len(raw_events) - len(events),
            )

        next_since = data.get("nextSince")
        if next_since:
            self._since = str(next_since)
        elif events and events[-1].get("timestamp") is not None:
            self._since = str(events[-1]["timestamp"])
        return events

    async def _run(self) -> None:
        opened = False
        try:
            while True:
                events = await self.poll_once()
                if not opened:
                    opened = True
                    self._listener.on_open()
                for event in events:
                    self._listener.on_message(event)
                await self._sleep(self._interval)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("polling.failed", scope_id=self._scope_id, error=str(e))
            self._listener.on_error(e)
        except Exception as e:
            logger.exception("polling.crashed", scope_id=self._scope_id)
            self._listener.on_error(e)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._owns_client:
            await self._client.aclose()


class PollingChannelProvider(ChannelProvider):
    name = "polling"

    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        interval: Optional[float] = None,
        limit: int = 10,
        token: Optional[str] = None,
        scope_param: str = "teamId",
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.interval = interval if interval is not None else settings.poll_interval
        self.limit = limit
        self.token = token if token is not None else settings.api_token
        self.scope_param = scope_param
        self._client = client
        self._sleep = sleep

    def _build_client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=30.0)

    async def subscribe(self, scope_id: str, listener: ChannelListener) -> Subscription:
        owns_client = self._client is None
        subscription = PollingSubscription(
            self._client or self._build_client(),
            scope_id,
            listener,
            interval=self.interval,
            limit=self.limit,
            scope_param=self.scope_param,
            owns_client=owns_client,
            sleep=self._sleep,
        )
        subscription.start()
        return subscription

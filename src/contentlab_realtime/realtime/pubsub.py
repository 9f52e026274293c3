"""Redis pub/sub — the primary realtime transport.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine for live UI updates (the dashboard fetches initial
state over REST anyway), and it's why the client marks reconnect gaps
instead of pretending the stream was continuous.

Channel naming: contentlab:events:{scope_id}
Each scope (a project, optionally narrowed to a user) gets its own channel,
so a subscriber only ever sees its own traffic.
"""

import asyncio
import json
import time
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from contentlab_realtime.config import settings
from contentlab_realtime.realtime.provider import (
    ChannelListener,
    ChannelProvider,
    Subscription,
)

logger = structlog.get_logger()

CHANNEL_PREFIX = "contentlab:events"


def scope_key(project_id: str, user_id: Optional[str] = None) -> str:
    """Build a scope id from a project id and an optional user id."""
    if not project_id:
        return ""
    return f"{project_id}:{user_id}" if user_id else project_id


def channel_for(scope_id: str) -> str:
    return f"{CHANNEL_PREFIX}:{scope_id}"


def connect_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Create a Redis client with string decoding enabled."""
    return aioredis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )


async def publish_event(
    redis: aioredis.Redis,
    scope_id: str,
    kind: str,
    payload: dict[str, Any],
) -> int:
    """Publish one event to a scope's channel.

    Returns the number of subscribers that received it (Redis PUBLISH reply).
    """
    message = json.dumps(
        {
            "kind": kind,
            "payload": payload,
            "timestamp": time.time(),
        },
        default=str,
    )
    receivers = await redis.publish(channel_for(scope_id), message)
    logger.debug("pubsub.published", scope_id=scope_id, kind=kind, receivers=receivers)
    return receivers


class RedisSubscription(Subscription):
    def __init__(self, pubsub, channel: str, reader: asyncio.Task):
        self._pubsub = pubsub
        self._channel = channel
        self._reader = reader
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        self._reader.cancel()
        try:
            await self._reader
        except asyncio.CancelledError:
            pass

        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except (RedisError, OSError) as e:
            # The connection is usually already gone when we get here
            logger.debug("pubsub.close_failed", channel=self._channel, error=str(e))


class RedisChannelProvider(ChannelProvider):
    """Subscribes to contentlab:events:{scope_id} and forwards messages."""

    name = "redis"

    def __init__(self, redis: Optional[aioredis.Redis] = None, url: Optional[str] = None):
        self._redis = redis
        self._url = url
        self._owns_client = redis is None

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = connect_redis(self._url)
        return self._redis

    async def subscribe(self, scope_id: str, listener: ChannelListener) -> Subscription:
        channel = channel_for(scope_id)
        pubsub = self._client().pubsub()
        try:
            await pubsub.subscribe(channel)
        except BaseException:
            await pubsub.aclose()
            raise

        logger.debug("pubsub.subscribed", channel=channel)
        listener.on_open()
        reader = asyncio.create_task(self._pump(pubsub, channel, listener))
        return RedisSubscription(pubsub, channel, reader)

    async def _pump(self, pubsub, channel: str, listener: ChannelListener) -> None:
        """Forward Redis messages to the listener until the stream breaks."""
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    listener.on_message(message["data"])
        except (RedisError, OSError) as e:
            logger.warning("pubsub.stream_error", channel=channel, error=str(e))
            listener.on_error(e)
            return
        listener.on_close("stream ended")

    async def aclose(self) -> None:
        """Close the Redis client if this provider created it."""
        if self._owns_client and self._redis is not None:
            await self._redis.aclose()
            self._redis = None

"""Redis Pub/Sub: publish side + subscriber background task."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from match_chat.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 1.0
MAX_RECONNECT_DELAY_SECONDS = 30.0


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher.

    ``payload`` carries its own ``event_type`` key, which becomes the envelope event name.
    """

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def publish(self, channel: str, payload: dict[str, Any]) -> None:
        data = dict(payload)
        event_type = data.pop("event_type", "unknown")
        await self._redis.publish(channel, serialize_event(event_type, data))


OnEventCallback = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]


class RedisPubSubSubscriber:
    """Background task that listens to a Redis channel and dispatches events.

    Lost connections are re-established with exponential backoff. Events
    published while disconnected are not replayed, so ``on_disconnect`` runs
    on every loss to let the owner end the streams that depended on it.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        callback: OnEventCallback,
        on_disconnect: Callable[[], Any] | None = None,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._callback = callback
        self._on_disconnect = on_disconnect
        self._task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name="redis-pubsub-subscriber")
        logger.info("Redis Pub/Sub subscriber started on channel=%s", self._channel)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Redis Pub/Sub subscriber stopped")

    async def _run(self) -> None:
        delay = RECONNECT_DELAY_SECONDS
        while True:
            try:
                await self._listen()
                return
            except (RedisConnectionError, OSError):
                logger.warning(
                    "Pub/Sub connection lost on %s, reconnecting in %.1fs",
                    self._channel, delay, exc_info=True,
                )
                if self._on_disconnect is not None:
                    self._on_disconnect()
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RECONNECT_DELAY_SECONDS)

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event_type, data = deserialize_event(message["data"])
                    await self._callback(event_type, data)
                except Exception:
                    logger.exception("Error processing pubsub message")
        finally:
            await pubsub.aclose()

"""Redis Streams consumer for events published by the match system."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Coroutine

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

OnStreamEventCallback = Callable[[str, dict[str, Any]], Coroutine[Any, Any, None]]


class RedisStreamConsumer:
    """XREADGROUP-based consumer for a single stream + consumer group.

    Entries are acknowledged only after the callback succeeds. On start, entries
    left pending by crashed consumers for longer than ``claim_idle_ms`` are
    claimed and processed first.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        stream: str,
        group: str,
        consumer: str,
        callback: OnStreamEventCallback,
        *,
        batch_size: int = 10,
        block_ms: int = 5000,
        claim_idle_ms: int = 60_000,
    ) -> None:
        self._redis = redis
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._callback = callback
        self._batch_size = batch_size
        self._block_ms = block_ms
        self._claim_idle_ms = claim_idle_ms
        self._task: asyncio.Task[None] | None = None

    async def ensure_group(self) -> None:
        try:
            await self._redis.xgroup_create(
                self._stream, self._group, id="$", mkstream=True
            )
            logger.info("Created consumer group %s on %s", self._group, self._stream)
        except aioredis.ResponseError as e:
            if "BUSYGROUP" in str(e):
                logger.debug("Consumer group %s already exists", self._group)
            else:
                raise

    async def start(self) -> None:
        await self.ensure_group()
        self._task = asyncio.create_task(self._consume(), name="redis-stream-consumer")
        logger.info("Stream consumer started: stream=%s group=%s", self._stream, self._group)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Stream consumer stopped")

    async def _handle(self, msg_id: str, fields: dict[str, Any]) -> None:
        event_type = fields.get("event_type", "unknown")
        try:
            await self._callback(event_type, fields)
        except Exception:
            logger.exception("Error processing stream message %s (%s)", msg_id, event_type)
            return
        await self._redis.xack(self._stream, self._group, msg_id)

    async def claim_stale(self) -> int:
        """Process entries abandoned by other consumers. Returns how many were handled."""
        handled = 0
        start_id = "0-0"
        while True:
            reply = await self._redis.xautoclaim(
                self._stream,
                self._group,
                self._consumer,
                min_idle_time=self._claim_idle_ms,
                start_id=start_id,
                count=self._batch_size,
            )
            start_id, messages = reply[0], reply[1]
            for msg_id, fields in messages:
                if fields is None:
                    continue
                await self._handle(msg_id, fields)
                handled += 1
            if not messages or start_id in ("0-0", b"0-0"):
                break
        if handled:
            logger.info("Claimed %d stale entries from %s", handled, self._stream)
        return handled

    async def _consume(self) -> None:
        try:
            await self.claim_stale()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Failed to claim stale stream entries")

        while True:
            try:
                entries = await self._redis.xreadgroup(
                    groupname=self._group,
                    consumername=self._consumer,
                    streams={self._stream: ">"},
                    count=self._batch_size,
                    block=self._block_ms,
                )
                if not entries:
                    continue
                for _stream_name, messages in entries:
                    for msg_id, fields in messages:
                        await self._handle(msg_id, fields)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Stream consumer error, retrying in 5s")
                await asyncio.sleep(5)

"""Consumer for match-system events via Redis Streams.

A ``match.created`` entry carries ``match_id``, ``user_id_1`` and ``user_id_2``
(and optionally ``matched_at``); it opens the pair's conversation under the
match id. Everything else on the stream is ignored.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import uuid
from datetime import datetime
from typing import Any, AsyncContextManager, Callable

import redis.asyncio as aioredis

from match_chat.application.exceptions import ConflictError, ValidationError
from match_chat.application.uow import UnitOfWork
from match_chat.config import settings
from match_chat.infrastructure.bus.redis_streams import RedisStreamConsumer
from match_chat.infrastructure.db.session import (
    SessionFactory,
    create_engine,
    create_session_factory,
)
from match_chat.infrastructure.db.uow import uow_scope
from match_chat.log_config import configure_logging
from match_chat.services import conversation_service

logger = logging.getLogger(__name__)

MATCH_CREATED = "match.created"

UoWFactory = Callable[[], AsyncContextManager[UnitOfWork]]


async def handle_event(
    event_type: str,
    fields: dict[str, Any],
    uow_factory: UoWFactory,
) -> None:
    if event_type == MATCH_CREATED:
        await _handle_match_created(fields, uow_factory)
    else:
        logger.debug("Ignoring event: %s", event_type)


async def _handle_match_created(fields: dict[str, Any], uow_factory: UoWFactory) -> None:
    try:
        match_id = uuid.UUID(fields["match_id"])
        user_a = uuid.UUID(fields["user_id_1"])
        user_b = uuid.UUID(fields["user_id_2"])
        matched_at = fields.get("matched_at")
        created_at = datetime.fromisoformat(matched_at) if matched_at else None
    except (KeyError, ValueError):
        # acked anyway: a retry would fail the same way
        logger.error("Dropping malformed %s event: %r", MATCH_CREATED, fields)
        return

    async with uow_factory() as uow:
        try:
            conv, created = await conversation_service.open_conversation(
                user_a, user_b, uow, conversation_id=match_id, created_at=created_at,
            )
        except (ValidationError, ConflictError) as exc:
            # acked: replaying the entry cannot succeed
            logger.error("Dropping match %s: %s", match_id, exc.detail)
            return

    if created:
        logger.info("Opened conversation %s for match %s", conv.id, match_id)
    else:
        logger.debug("Conversation %s already exists for match %s", conv.id, match_id)


async def run_consumer(session_factory: SessionFactory, redis: aioredis.Redis) -> None:
    consumer_name = f"consumer-{uuid.uuid4().hex[:8]}"
    uow_factory = functools.partial(uow_scope, session_factory)

    async def _callback(event_type: str, fields: dict[str, Any]) -> None:
        await handle_event(event_type, fields, uow_factory)

    consumer = RedisStreamConsumer(
        redis=redis,
        stream=settings.MATCH_EVENTS_STREAM,
        group=settings.MATCH_EVENTS_GROUP,
        consumer=consumer_name,
        callback=_callback,
    )
    await consumer.start()
    logger.info("Match events consumer started (%s)", consumer_name)

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await consumer.stop()


async def _main() -> None:
    engine = create_engine(settings)
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await run_consumer(create_session_factory(engine), redis)
    finally:
        await redis.aclose()
        await engine.dispose()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(_main())


if __name__ == "__main__":
    main()

"""Outbox worker: polls pending outbox records, publishes via Redis Pub/Sub."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

import redis.asyncio as aioredis

from match_chat.application.ports.bus import EventPublisher
from match_chat.application.uow import UnitOfWork
from match_chat.config import settings
from match_chat.infrastructure.bus.redis_pubsub import RedisPubSubPublisher
from match_chat.infrastructure.db.session import (
    SessionFactory,
    create_engine,
    create_session_factory,
)
from match_chat.infrastructure.db.uow import uow_scope
from match_chat.log_config import configure_logging

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 5
MAX_DELAY_SECONDS = 300


def calc_backoff(attempts: int, now: datetime | None = None) -> datetime:
    delay = min(BASE_DELAY_SECONDS * (2 ** attempts), MAX_DELAY_SECONDS)
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=delay)


async def process_batch(
    uow: UnitOfWork,
    publisher: EventPublisher,
    *,
    channel: str,
    batch_size: int,
    max_attempts: int,
) -> int:
    """Publish one batch of due outbox records in id order. Returns how many were sent.

    Records that already failed ``max_attempts`` times are marked dead instead
    of being retried. Once a record fails, later records of the same
    conversation go back to pending untouched so fan-out keeps creation order;
    the repository holds them back until the failed one is published.
    """
    batch = await uow.outbox.fetch_pending(batch_size)
    if not batch:
        return 0

    sent_ids: list[int] = []
    dead_ids: list[int] = []
    held_ids: list[int] = []
    failed_conversations: set[UUID] = set()
    for record in batch:
        if record.conversation_id in failed_conversations:
            held_ids.append(record.id)
            continue
        if record.attempts >= max_attempts:
            logger.error(
                "Outbox record %d (%s) exceeded %d attempts, marking dead",
                record.id, record.event_type, max_attempts,
            )
            dead_ids.append(record.id)
            continue
        try:
            await publisher.publish(channel, {"event_type": record.event_type, **record.payload})
            sent_ids.append(record.id)
        except Exception:
            logger.exception("Failed to publish outbox record %d", record.id)
            await uow.outbox.mark_failed(record.id, calc_backoff(record.attempts))
            if record.conversation_id is not None:
                failed_conversations.add(record.conversation_id)

    await uow.outbox.mark_sent(sent_ids)
    await uow.outbox.mark_dead(dead_ids)
    await uow.outbox.release(held_ids)
    await uow.commit()
    if sent_ids:
        logger.info("Published %d outbox records", len(sent_ids))
    return len(sent_ids)


async def run_outbox_worker(session_factory: SessionFactory, redis: aioredis.Redis) -> None:
    publisher = RedisPubSubPublisher(redis)
    logger.info(
        "Outbox worker started (poll=%.1fs, batch=%d, max_attempts=%d)",
        settings.OUTBOX_POLL_INTERVAL,
        settings.OUTBOX_BATCH_SIZE,
        settings.OUTBOX_MAX_ATTEMPTS,
    )
    while True:
        sent = 0
        try:
            async with uow_scope(session_factory) as uow:
                sent = await process_batch(
                    uow,
                    publisher,
                    channel=settings.REDIS_PUBSUB_CHANNEL,
                    batch_size=settings.OUTBOX_BATCH_SIZE,
                    max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
                )
        except Exception:
            logger.exception("Outbox worker loop error")
        # a full batch means more is probably waiting
        if sent < settings.OUTBOX_BATCH_SIZE:
            await asyncio.sleep(settings.OUTBOX_POLL_INTERVAL)


async def _main() -> None:
    engine = create_engine(settings)
    redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        await run_outbox_worker(create_session_factory(engine), redis)
    finally:
        await redis.aclose()
        await engine.dispose()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(_main())


if __name__ == "__main__":
    main()

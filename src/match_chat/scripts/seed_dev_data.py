"""Seed development data: one match with a short exchange between two users."""
from __future__ import annotations

import asyncio
import logging
import uuid

from match_chat.application.dto.message import SendMessageDTO
from match_chat.config import settings
from match_chat.infrastructure.db.session import create_engine, create_session_factory
from match_chat.infrastructure.db.uow import uow_scope
from match_chat.log_config import configure_logging
from match_chat.services import conversation_service, message_service

logger = logging.getLogger(__name__)

ALICE = uuid.UUID("00000000-0000-4000-8000-00000000a11c")
BOB = uuid.UUID("00000000-0000-4000-8000-000000000b0b")

_EXCHANGE = [
    (ALICE, "Hey! Loved your hiking photos."),
    (BOB, "Thanks! That was the ridge trail last weekend."),
    (ALICE, "No way, I've been wanting to do that one."),
    (BOB, "We should go together sometime?"),
]


async def seed() -> None:
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    try:
        async with uow_scope(session_factory) as uow:
            conv, _ = await conversation_service.open_conversation(ALICE, BOB, uow)

        for sender_id, body in _EXCHANGE:
            async with uow_scope(session_factory) as uow:
                await message_service.send_message(
                    SendMessageDTO(conversation_id=conv.id, body=body, client_msg_id=uuid.uuid4()),
                    sender_id,
                    uow,
                )

        logger.info("Seeded conversation %s with %d messages", conv.id, len(_EXCHANGE))
    finally:
        await engine.dispose()


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(seed())


if __name__ == "__main__":
    main()

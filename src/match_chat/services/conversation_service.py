from __future__ import annotations

import logging
import uuid
from datetime import datetime

from match_chat.application.dto.conversation import ConversationPageDTO
from match_chat.application.exceptions import ValidationError
from match_chat.application.policies.permissions import assert_participant
from match_chat.application.ports.clock import Clock, SystemClock
from match_chat.application.uow import UnitOfWork
from match_chat.domain.entities.conversation import Conversation, normalize_pair
from match_chat.domain.events.conversation_created import ConversationCreated
from match_chat.infrastructure.db.repositories._cursor import encode_cursor

logger = logging.getLogger(__name__)

_system_clock = SystemClock()


async def open_conversation(
    user_a: uuid.UUID,
    user_b: uuid.UUID,
    uow: UnitOfWork,
    *,
    conversation_id: uuid.UUID | None = None,
    created_at: datetime | None = None,
    clock: Clock = _system_clock,
) -> tuple[Conversation, bool]:
    """Return the pair's conversation, creating it if needed.

    ``conversation_id`` lets the match system reuse its match id. Returns
    (conversation, created).
    """
    if user_a == user_b:
        raise ValidationError("A conversation needs two distinct participants")

    existing = await uow.conversations.get_by_pair(user_a, user_b)
    if existing is not None:
        return existing, False

    user_id_1, user_id_2 = normalize_pair(user_a, user_b)
    conversation = Conversation(
        id=conversation_id or uuid.uuid4(),
        user_id_1=user_id_1,
        user_id_2=user_id_2,
        last_message_at=None,
        created_at=created_at or clock.now(),
    )
    conversation, created = await uow.conversations_w.create_if_not_exists(conversation)
    if not created:
        # lost a race with a concurrent create for the same pair
        await uow.rollback()
        return conversation, False

    event = ConversationCreated(conversation.id, conversation.user_id_1, conversation.user_id_2)
    await uow.outbox.add(event.event_type, event.to_payload())
    await uow.commit()
    return conversation, True


async def list_user_conversations(
    user_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    cursor: str | None = None,
    limit: int = 50,
) -> ConversationPageDTO:
    if limit < 1:
        raise ValidationError("limit must be positive")
    items = await uow.conversations.list_summaries_for_user(
        user_id, cursor=cursor, limit=limit,
    )
    next_cursor = None
    if len(items) == limit:
        last = items[-1]
        next_cursor = encode_cursor(last.activity_at, last.conversation_id)
    return ConversationPageDTO(items=items, next_cursor=next_cursor)


async def get_conversation(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    uow: UnitOfWork,
) -> Conversation:
    conversation = await uow.conversations.get_by_id(conversation_id)
    return assert_participant(conversation, user_id)

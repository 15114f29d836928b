from __future__ import annotations

import logging
import uuid

from match_chat.application.exceptions import MessageNotFoundError, NotReceiverError
from match_chat.application.policies.permissions import assert_participant
from match_chat.application.ports.clock import Clock, SystemClock
from match_chat.application.uow import UnitOfWork

logger = logging.getLogger(__name__)

_system_clock = SystemClock()


async def mark_message_read(
    message_id: uuid.UUID,
    user_id: uuid.UUID,
    uow: UnitOfWork,
    clock: Clock = _system_clock,
) -> bool:
    """Set read_at on one message. Already-read messages are a no-op.

    Returns True when this call performed the transition.
    """
    transitioned = await uow.messages_w.mark_read(message_id, user_id, clock.now())
    if transitioned:
        await uow.commit()
        return True

    message = await uow.messages.get_by_id(message_id)
    if message is None:
        raise MessageNotFoundError()
    if message.receiver_id != user_id:
        raise NotReceiverError()
    return False


async def mark_conversation_read(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    uow: UnitOfWork,
    clock: Clock = _system_clock,
) -> int:
    """Mark all of the user's unread messages in a conversation. Returns how many changed."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_participant(conversation, user_id)

    count = await uow.messages_w.mark_conversation_read(conversation_id, user_id, clock.now())
    await uow.commit()
    if count:
        logger.debug("Marked %d messages read in %s for %s", count, conversation_id, user_id)
    return count


async def get_unread_count(user_id: uuid.UUID, uow: UnitOfWork) -> int:
    return await uow.messages.count_unread(user_id)

from __future__ import annotations

import logging
import uuid

from match_chat.application.dto.message import SendMessageDTO
from match_chat.application.exceptions import (
    ConversationNotFoundError,
    InvalidParticipantError,
    MessageNotFoundError,
    ValidationError,
)
from match_chat.application.policies.permissions import assert_participant
from match_chat.application.ports.clock import Clock, SystemClock
from match_chat.application.uow import UnitOfWork
from match_chat.config import settings
from match_chat.domain.entities.conversation import Conversation
from match_chat.domain.entities.message import Message
from match_chat.domain.events.message_created import MessageCreated
from match_chat.domain.value_objects.enums import MediaType

logger = logging.getLogger(__name__)

_system_clock = SystemClock()


def _validate_content(dto: SendMessageDTO) -> str:
    body = dto.body or ""
    if (dto.media_url is None) != (dto.media_type is None):
        raise ValidationError("media_url and media_type must be given together")
    if dto.media_type is not None and dto.media_type not in MediaType.__members__.values():
        raise ValidationError(f"Unsupported media_type: {dto.media_type}")
    if not body.strip() and dto.media_url is None:
        raise ValidationError("Message must have a body or media")
    if len(body) > settings.MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"Message body exceeds {settings.MESSAGE_MAX_LENGTH} characters"
        )
    return body


def _resolve_receiver(
    conversation: Conversation,
    sender_id: uuid.UUID,
    receiver_id: uuid.UUID | None,
) -> uuid.UUID:
    if not conversation.has_participant(sender_id):
        raise InvalidParticipantError("Sender is not a participant of this conversation")
    expected = conversation.other_participant(sender_id)
    if receiver_id is not None and receiver_id != expected:
        raise InvalidParticipantError("Receiver is not the other participant of this conversation")
    return expected


async def send_message(
    dto: SendMessageDTO,
    sender_id: uuid.UUID,
    uow: UnitOfWork,
    clock: Clock = _system_clock,
) -> tuple[Message, bool]:
    """Append a message to a conversation.

    The conversation row stays locked until commit, so appends to one
    conversation are serialized and ``created_at`` never goes backwards.
    Message, ``last_message_at`` and the outbox event commit together.

    Returns (message, created). With a repeated ``client_msg_id`` the stored
    message is returned with created=False and nothing is written.
    """
    body = _validate_content(dto)

    conversation = await uow.conversations.get_for_update(dto.conversation_id)
    if conversation is None:
        raise ConversationNotFoundError()
    receiver_id = _resolve_receiver(conversation, sender_id, dto.receiver_id)

    now = clock.now()
    if conversation.last_message_at is not None and conversation.last_message_at > now:
        now = conversation.last_message_at

    msg = Message(
        id=uuid.uuid4(),
        conversation_id=conversation.id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        body=body,
        media_url=dto.media_url,
        media_type=dto.media_type,
        client_msg_id=dto.client_msg_id,
        created_at=now,
    )

    msg, created = await uow.messages_w.create_if_not_exists(msg)

    if not created:
        await uow.rollback()
        logger.debug("Duplicate client_msg_id %s in %s", dto.client_msg_id, conversation.id)
        return msg, False

    await uow.conversations_w.touch_last_message_at(conversation.id, msg.created_at)
    event = MessageCreated(msg)
    await uow.outbox.add(event.event_type, event.to_payload())
    await uow.commit()
    logger.info("Message %s appended to conversation %s", msg.id, conversation.id)
    return msg, True


async def list_messages(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    uow: UnitOfWork,
    *,
    limit: int = 50,
    before_id: uuid.UUID | None = None,
    after_id: uuid.UUID | None = None,
) -> list[Message]:
    """Page of a conversation's timeline, oldest-first.

    ``before_id`` returns the newest ``limit`` messages strictly older than the
    anchor; ``after_id`` the oldest ``limit`` strictly newer (used to catch up
    after a realtime disconnect).
    """
    if limit < 1:
        raise ValidationError("limit must be positive")
    if before_id is not None and after_id is not None:
        raise ValidationError("before_id and after_id are mutually exclusive")

    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_participant(conversation, user_id)

    before = await _load_anchor(conversation_id, before_id, uow)
    after = await _load_anchor(conversation_id, after_id, uow)
    return await uow.messages.list_messages(
        conversation_id, limit=limit, before=before, after=after,
    )


async def _load_anchor(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID | None,
    uow: UnitOfWork,
) -> Message | None:
    if message_id is None:
        return None
    anchor = await uow.messages.get_by_id(message_id)
    if anchor is None or anchor.conversation_id != conversation_id:
        raise MessageNotFoundError()
    return anchor

from __future__ import annotations

from match_chat.domain.entities.message import Message
from match_chat.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=model.id,
        conversation_id=model.conversation_id,
        sender_id=model.sender_id,
        receiver_id=model.receiver_id,
        body=model.body,
        media_url=model.media_url,
        media_type=model.media_type,
        client_msg_id=model.client_msg_id,
        created_at=model.created_at,
        read_at=model.read_at,
    )


def entity_to_values(entity: Message) -> dict:
    """Column values for an INSERT ... ON CONFLICT statement."""
    return {
        "id": entity.id,
        "conversation_id": entity.conversation_id,
        "sender_id": entity.sender_id,
        "receiver_id": entity.receiver_id,
        "body": entity.body,
        "media_url": entity.media_url,
        "media_type": entity.media_type,
        "client_msg_id": entity.client_msg_id,
        "created_at": entity.created_at,
        "read_at": entity.read_at,
    }

from __future__ import annotations

from match_chat.domain.entities.conversation import Conversation
from match_chat.infrastructure.db.models.conversation import ConversationModel


def model_to_entity(model: ConversationModel) -> Conversation:
    return Conversation(
        id=model.id,
        user_id_1=model.user_id_1,
        user_id_2=model.user_id_2,
        last_message_at=model.last_message_at,
        created_at=model.created_at,
    )


def entity_to_values(entity: Conversation) -> dict:
    return {
        "id": entity.id,
        "user_id_1": entity.user_id_1,
        "user_id_2": entity.user_id_2,
        "last_message_at": entity.last_message_at,
        "created_at": entity.created_at,
    }

from __future__ import annotations

from uuid import UUID

from match_chat.application.exceptions import (
    ConversationNotFoundError,
    InvalidParticipantError,
)
from match_chat.domain.entities.conversation import Conversation


def assert_participant(conversation: Conversation | None, user_id: UUID) -> Conversation:
    """Raise if conversation doesn't exist or the user is not one of its two members."""
    if conversation is None:
        raise ConversationNotFoundError()
    if not conversation.has_participant(user_id):
        raise InvalidParticipantError()
    return conversation

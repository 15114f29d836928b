from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from match_chat.api.v1.schemas.message import MessageResponse


class ConversationSummaryResponse(BaseModel):
    conversation_id: UUID
    other_user_id: UUID
    last_message: MessageResponse | None
    unread_count: int
    last_message_at: datetime | None

    model_config = {"from_attributes": True}


class MarkReadResponse(BaseModel):
    marked_read: int


class UnreadCountResponse(BaseModel):
    unread_count: int

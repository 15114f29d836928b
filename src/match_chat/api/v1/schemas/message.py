from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from match_chat.domain.value_objects.enums import MediaType


class SendMessageRequest(BaseModel):
    body: str = ""
    receiver_id: UUID | None = None
    media_url: str | None = Field(default=None, max_length=2048)
    media_type: MediaType | None = None
    client_msg_id: UUID | None = None


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    receiver_id: UUID
    body: str
    media_url: str | None
    media_type: str | None
    client_msg_id: UUID | None
    created_at: datetime
    read_at: datetime | None

    model_config = {"from_attributes": True}

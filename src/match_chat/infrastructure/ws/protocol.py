"""WebSocket message envelope models."""
from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import BaseModel, model_validator


class WsInbound(BaseModel):
    """Client → Server."""

    type: str  # ping | subscribe | unsubscribe | message.send | mark_read
    data: dict[str, Any] = {}


class ConversationRef(BaseModel):
    """``data`` of subscribe / unsubscribe."""

    conversation_id: UUID


class SendData(BaseModel):
    conversation_id: UUID
    body: str | None = None
    receiver_id: UUID | None = None
    media_url: str | None = None
    media_type: str | None = None
    client_msg_id: UUID | None = None


class MarkReadData(BaseModel):
    """``data`` of mark_read: one message, or the whole conversation."""

    conversation_id: UUID | None = None
    message_id: UUID | None = None

    @model_validator(mode="after")
    def _one_target(self) -> MarkReadData:
        if self.message_id is None and self.conversation_id is None:
            raise ValueError("conversation_id or message_id is required")
        return self


class WsOutbound(BaseModel):
    """Server → Client."""

    type: str  # pong | subscribed | unsubscribed | message.created | message.sent | subscription.closed | read | error
    data: dict[str, Any] = {}


def frame(event_type: str, **data: Any) -> str:
    return WsOutbound(type=event_type, data=data).model_dump_json()


def error_frame(code: str, **detail: Any) -> str:
    return frame("error", code=code, **detail)

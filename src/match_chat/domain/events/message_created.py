from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from match_chat.domain.entities.message import Message

EVENT_TYPE = "chat.message_created"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True, slots=True)
class MessageCreated:
    message: Message

    event_type = EVENT_TYPE

    def to_payload(self) -> dict[str, Any]:
        m = self.message
        return {
            "conversation_id": str(m.conversation_id),
            "message": {
                "id": str(m.id),
                "conversation_id": str(m.conversation_id),
                "sender_id": str(m.sender_id),
                "receiver_id": str(m.receiver_id),
                "body": m.body,
                "media_url": m.media_url,
                "media_type": m.media_type,
                "client_msg_id": str(m.client_msg_id) if m.client_msg_id else None,
                "created_at": m.created_at.isoformat(),
                "read_at": _iso(m.read_at),
            },
        }

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> MessageCreated:
        """Inverse of ``to_payload``; ``data`` is the inner ``message`` object."""
        client_msg_id = data.get("client_msg_id")
        read_at = data.get("read_at")
        return cls(
            Message(
                id=UUID(data["id"]),
                conversation_id=UUID(data["conversation_id"]),
                sender_id=UUID(data["sender_id"]),
                receiver_id=UUID(data["receiver_id"]),
                body=data.get("body") or "",
                media_url=data.get("media_url"),
                media_type=data.get("media_type"),
                client_msg_id=UUID(client_msg_id) if client_msg_id else None,
                created_at=datetime.fromisoformat(data["created_at"]),
                read_at=datetime.fromisoformat(read_at) if read_at else None,
            )
        )

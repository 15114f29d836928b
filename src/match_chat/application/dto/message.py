from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class SendMessageDTO:
    conversation_id: UUID
    body: str = ""
    receiver_id: UUID | None = None
    media_url: str | None = None
    media_type: str | None = None
    client_msg_id: UUID | None = None

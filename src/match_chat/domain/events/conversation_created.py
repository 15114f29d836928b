from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import UUID

EVENT_TYPE = "chat.conversation_created"


@dataclass(frozen=True, slots=True)
class ConversationCreated:
    conversation_id: UUID
    user_id_1: UUID
    user_id_2: UUID

    event_type = EVENT_TYPE

    def to_payload(self) -> dict[str, Any]:
        return {
            "conversation_id": str(self.conversation_id),
            "user_id_1": str(self.user_id_1),
            "user_id_2": str(self.user_id_2),
        }

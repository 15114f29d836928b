from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Message:
    id: UUID
    conversation_id: UUID
    sender_id: UUID
    receiver_id: UUID
    body: str
    media_url: str | None
    media_type: str | None
    client_msg_id: UUID | None
    created_at: datetime
    read_at: datetime | None = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def sort_key(self) -> tuple[datetime, UUID]:
        """Timeline position: creation time, then id."""
        return self.created_at, self.id

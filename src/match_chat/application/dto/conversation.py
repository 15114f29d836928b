from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from match_chat.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class ConversationSummaryDTO:
    """One row of a user's chat list, read in a single snapshot."""

    conversation_id: UUID
    other_user_id: UUID
    last_message: Message | None
    unread_count: int
    last_message_at: datetime | None
    created_at: datetime

    @property
    def activity_at(self) -> datetime:
        return self.last_message_at or self.created_at


@dataclass(frozen=True, slots=True)
class ConversationPageDTO:
    items: list[ConversationSummaryDTO]
    next_cursor: str | None = None

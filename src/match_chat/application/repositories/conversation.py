from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from match_chat.application.dto.conversation import ConversationSummaryDTO
from match_chat.domain.entities.conversation import Conversation


class ConversationReader(Protocol):
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None: ...

    async def get_for_update(self, conversation_id: UUID) -> Conversation | None:
        """Load and row-lock the conversation until the transaction ends."""
        ...

    async def get_by_pair(self, user_a: UUID, user_b: UUID) -> Conversation | None: ...

    async def list_summaries_for_user(
        self, user_id: UUID, *, cursor: str | None = None, limit: int = 50
    ) -> list[ConversationSummaryDTO]:
        """Chat list rows, most recent activity first, from one consistent read."""
        ...


class ConversationWriter(Protocol):
    async def create_if_not_exists(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        """Insert conversation. If the participant pair already has one, return it with created=False."""
        ...

    async def touch_last_message_at(
        self, conversation_id: UUID, ts: datetime
    ) -> None: ...

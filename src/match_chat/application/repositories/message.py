from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from match_chat.domain.entities.message import Message


class MessageReader(Protocol):
    async def get_by_id(self, message_id: UUID) -> Message | None: ...

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        limit: int = 50,
        before: Message | None = None,
        after: Message | None = None,
    ) -> list[Message]:
        """Oldest-first page. ``before``/``after`` are exclusive timeline anchors."""
        ...

    async def count_unread(self, user_id: UUID) -> int: ...


class MessageWriter(Protocol):
    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Insert message. Return (message, created). If conflict on client_msg_id → return existing."""
        ...

    async def mark_read(self, message_id: UUID, receiver_id: UUID, ts: datetime) -> bool:
        """Set read_at if still unread and addressed to receiver_id. Return True if it transitioned."""
        ...

    async def mark_conversation_read(
        self, conversation_id: UUID, receiver_id: UUID, ts: datetime
    ) -> int:
        """Mark every unread message for receiver_id in the conversation. Return rows transitioned."""
        ...

from __future__ import annotations

from typing import Protocol

from match_chat.application.repositories.conversation import (
    ConversationReader,
    ConversationWriter,
)
from match_chat.application.repositories.message import MessageReader, MessageWriter
from match_chat.application.repositories.outbox import OutboxWriter


class UnitOfWork(Protocol):
    """One transaction. Services commit explicitly; leaving the block on an error rolls back."""

    conversations: ConversationReader
    conversations_w: ConversationWriter
    messages: MessageReader
    messages_w: MessageWriter
    outbox: OutboxWriter

    async def commit(self) -> None: ...
    async def rollback(self) -> None: ...
    async def flush(self) -> None: ...

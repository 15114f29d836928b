from __future__ import annotations

from contextlib import asynccontextmanager
from types import TracebackType
from typing import AsyncIterator, Self

from sqlalchemy.ext.asyncio import AsyncSession

from match_chat.infrastructure.db.errors import translate_backend_errors
from match_chat.infrastructure.db.repositories.conversation import (
    ConversationReaderRepo,
    ConversationWriterRepo,
)
from match_chat.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)
from match_chat.infrastructure.db.repositories.outbox import OutboxWriterRepo
from match_chat.infrastructure.db.session import SessionFactory


class SqlAlchemyUoW:
    """Concrete Unit-of-Work backed by a single AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.conversations = ConversationReaderRepo(session)
        self.conversations_w = ConversationWriterRepo(session)
        self.messages = MessageReaderRepo(session)
        self.messages_w = MessageWriterRepo(session)
        self.outbox = OutboxWriterRepo(session)

    @translate_backend_errors
    async def flush(self) -> None:
        await self._session.flush()

    @translate_backend_errors
    async def commit(self) -> None:
        await self._session.commit()

    async def rollback(self) -> None:
        await self._session.rollback()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            await self.rollback()


@asynccontextmanager
async def uow_scope(session_factory: SessionFactory) -> AsyncIterator[SqlAlchemyUoW]:
    """Open a session for work outside the request cycle (WS handlers, workers, scripts)."""
    async with session_factory() as session:
        async with SqlAlchemyUoW(session) as uow:
            yield uow

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, tuple_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from match_chat.application.exceptions import ConflictError
from match_chat.domain.entities.message import Message
from match_chat.infrastructure.db.errors import translate_backend_errors
from match_chat.infrastructure.db.mappers import message as mapper
from match_chat.infrastructure.db.models.message import MessageModel

_timeline = tuple_(MessageModel.created_at, MessageModel.id)


class MessageReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @translate_backend_errors
    async def get_by_id(self, message_id: UUID) -> Message | None:
        stmt = (
            select(MessageModel)
            .where(MessageModel.id == message_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    @translate_backend_errors
    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        limit: int = 50,
        before: Message | None = None,
        after: Message | None = None,
    ) -> list[Message]:
        stmt = select(MessageModel).where(MessageModel.conversation_id == conversation_id)

        if after is not None:
            stmt = (
                stmt.where(_timeline > tuple_(after.created_at, after.id))
                .order_by(MessageModel.created_at.asc(), MessageModel.id.asc())
                .limit(limit)
            )
            result = await self._session.execute(stmt)
            return [mapper.model_to_entity(m) for m in result.scalars().all()]

        # newest page first, then flipped to oldest-first
        if before is not None:
            stmt = stmt.where(_timeline < tuple_(before.created_at, before.id))
        stmt = stmt.order_by(MessageModel.created_at.desc(), MessageModel.id.desc()).limit(limit)
        result = await self._session.execute(stmt)
        return [mapper.model_to_entity(m) for m in reversed(result.scalars().all())]

    @translate_backend_errors
    async def count_unread(self, user_id: UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(MessageModel)
            .where(
                MessageModel.receiver_id == user_id,
                MessageModel.read_at.is_(None),
            )
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


class MessageWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @translate_backend_errors
    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        """Insert message idempotently. Returns (message, created_flag)."""
        stmt = (
            pg_insert(MessageModel)
            .values(**mapper.entity_to_values(message))
            .on_conflict_do_nothing(
                index_elements=["conversation_id", "sender_id", "client_msg_id"],
                index_where=MessageModel.client_msg_id.is_not(None),
            )
            .returning(MessageModel)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()

        if row is not None:
            return mapper.model_to_entity(row), True

        # conflict: return the stored row
        existing = await self.get_by_client_msg_id(
            message.conversation_id,
            message.sender_id,
            message.client_msg_id,  # type: ignore[arg-type]
        )
        if existing is None:
            raise ConflictError("Message conflicts with a row that is no longer visible")
        return existing, False

    @translate_backend_errors
    async def get_by_client_msg_id(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        client_msg_id: UUID,
    ) -> Message | None:
        stmt = select(MessageModel).where(
            MessageModel.conversation_id == conversation_id,
            MessageModel.sender_id == sender_id,
            MessageModel.client_msg_id == client_msg_id,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    @translate_backend_errors
    async def mark_read(self, message_id: UUID, receiver_id: UUID, ts: datetime) -> bool:
        stmt = (
            update(MessageModel)
            .where(
                MessageModel.id == message_id,
                MessageModel.receiver_id == receiver_id,
                MessageModel.read_at.is_(None),
            )
            .values(read_at=ts)
            .returning(MessageModel.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @translate_backend_errors
    async def mark_conversation_read(
        self,
        conversation_id: UUID,
        receiver_id: UUID,
        ts: datetime,
    ) -> int:
        # Concurrent callers block on the row locks and re-check read_at,
        # so each row is counted by exactly one of them.
        stmt = (
            update(MessageModel)
            .where(
                MessageModel.conversation_id == conversation_id,
                MessageModel.receiver_id == receiver_id,
                MessageModel.read_at.is_(None),
            )
            .values(read_at=ts)
            .returning(MessageModel.id)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return len(result.scalars().all())

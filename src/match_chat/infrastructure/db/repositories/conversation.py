from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select, true, tuple_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from match_chat.application.dto.conversation import ConversationSummaryDTO
from match_chat.application.exceptions import ConflictError
from match_chat.domain.entities.conversation import Conversation, normalize_pair
from match_chat.infrastructure.db.errors import translate_backend_errors
from match_chat.infrastructure.db.mappers import conversation as mapper
from match_chat.infrastructure.db.mappers import message as message_mapper
from match_chat.infrastructure.db.models.conversation import ConversationModel
from match_chat.infrastructure.db.models.message import MessageModel
from match_chat.infrastructure.db.repositories._cursor import decode_cursor

_activity_at = func.coalesce(ConversationModel.last_message_at, ConversationModel.created_at)


class ConversationReaderRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @translate_backend_errors
    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        result = await self._session.get(
            ConversationModel, conversation_id, populate_existing=True,
        )
        return mapper.model_to_entity(result) if result else None

    @translate_backend_errors
    async def get_for_update(self, conversation_id: UUID) -> Conversation | None:
        stmt = (
            select(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    @translate_backend_errors
    async def get_by_pair(self, user_a: UUID, user_b: UUID) -> Conversation | None:
        user_id_1, user_id_2 = normalize_pair(user_a, user_b)
        stmt = select(ConversationModel).where(
            ConversationModel.user_id_1 == user_id_1,
            ConversationModel.user_id_2 == user_id_2,
        )
        result = await self._session.execute(stmt)
        model = result.scalar_one_or_none()
        return mapper.model_to_entity(model) if model else None

    @translate_backend_errors
    async def list_summaries_for_user(
        self,
        user_id: UUID,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> list[ConversationSummaryDTO]:
        # One statement: last message and unread count come from the same snapshot.
        last_message_sq = (
            select(MessageModel)
            .where(MessageModel.conversation_id == ConversationModel.id)
            .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
            .limit(1)
            .correlate(ConversationModel)
            .lateral("last_message")
        )
        last_message = aliased(MessageModel, last_message_sq)
        unread_count = (
            select(func.count(MessageModel.id))
            .where(
                MessageModel.conversation_id == ConversationModel.id,
                MessageModel.receiver_id == user_id,
                MessageModel.read_at.is_(None),
            )
            .correlate(ConversationModel)
            .scalar_subquery()
        )
        stmt = (
            select(ConversationModel, last_message, unread_count.label("unread_count"))
            .outerjoin(last_message, true())
            .where(
                or_(
                    ConversationModel.user_id_1 == user_id,
                    ConversationModel.user_id_2 == user_id,
                )
            )
            .order_by(_activity_at.desc(), ConversationModel.id)
            .limit(limit)
        )
        if cursor:
            ts, cid = decode_cursor(cursor)
            stmt = stmt.where(
                (_activity_at < ts)
                | ((_activity_at == ts) & (ConversationModel.id > cid))
            )
        result = await self._session.execute(stmt)

        summaries: list[ConversationSummaryDTO] = []
        for conv, msg, unread in result.all():
            entity = mapper.model_to_entity(conv)
            summaries.append(
                ConversationSummaryDTO(
                    conversation_id=entity.id,
                    other_user_id=entity.other_participant(user_id),
                    last_message=message_mapper.model_to_entity(msg) if msg else None,
                    unread_count=int(unread or 0),
                    last_message_at=entity.last_message_at,
                    created_at=entity.created_at,
                )
            )
        return summaries


class ConversationWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @translate_backend_errors
    async def create_if_not_exists(
        self, conversation: Conversation
    ) -> tuple[Conversation, bool]:
        """Insert conversation idempotently on its participant pair. Returns (conversation, created_flag).

        Raises ConflictError when the id already belongs to a different pair.
        """
        stmt = (
            pg_insert(ConversationModel)
            .values(**mapper.entity_to_values(conversation))
            .on_conflict_do_nothing()
            .returning(ConversationModel)
        )
        result = await self._session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is not None:
            return mapper.model_to_entity(row), True

        stmt = select(ConversationModel).where(
            tuple_(ConversationModel.user_id_1, ConversationModel.user_id_2)
            == tuple_(conversation.user_id_1, conversation.user_id_2)
        )
        existing = (await self._session.execute(stmt)).scalar_one_or_none()
        if existing is None:
            raise ConflictError(f"Conversation id {conversation.id} is already taken")
        return mapper.model_to_entity(existing), False

    @translate_backend_errors
    async def touch_last_message_at(
        self,
        conversation_id: UUID,
        ts: datetime,
    ) -> None:
        stmt = (
            update(ConversationModel)
            .where(ConversationModel.id == conversation_id)
            .values(last_message_at=ts)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

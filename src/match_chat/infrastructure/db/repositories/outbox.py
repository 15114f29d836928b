from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from match_chat.application.repositories.outbox import OutboxRecord
from match_chat.domain.value_objects.enums import OutboxStatus
from match_chat.infrastructure.db.errors import translate_backend_errors
from match_chat.infrastructure.db.models.outbox import OutboxMessageModel


def _blocked_by_earlier_record():
    # an earlier record of the same conversation is in flight or waiting on a retry
    earlier = aliased(OutboxMessageModel)
    return exists().where(
        earlier.conversation_id == OutboxMessageModel.conversation_id,
        earlier.id < OutboxMessageModel.id,
        or_(
            earlier.status == OutboxStatus.PROCESSING,
            and_(earlier.status == OutboxStatus.FAILED, earlier.next_retry_at > func.now()),
        ),
    )


class OutboxWriterRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @translate_backend_errors
    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        conversation_id = payload.get("conversation_id")
        model = OutboxMessageModel(
            event_type=event_type,
            conversation_id=UUID(conversation_id) if conversation_id else None,
            payload=payload,
        )
        self._session.add(model)
        await self._session.flush()

    @translate_backend_errors
    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]:
        stmt = (
            select(OutboxMessageModel)
            .where(
                OutboxMessageModel.status.in_([OutboxStatus.PENDING, OutboxStatus.FAILED]),
                (
                    OutboxMessageModel.next_retry_at.is_(None)
                    | (OutboxMessageModel.next_retry_at <= func.now())
                ),
                ~_blocked_by_earlier_record(),
            )
            .order_by(OutboxMessageModel.id.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True, of=OutboxMessageModel)
        )
        result = await self._session.execute(stmt)
        rows = result.scalars().all()

        if rows:
            ids = [r.id for r in rows]
            await self._session.execute(
                update(OutboxMessageModel)
                .where(OutboxMessageModel.id.in_(ids))
                .values(status=OutboxStatus.PROCESSING)
                .execution_options(synchronize_session=False)
            )
            await self._session.flush()

        return [
            OutboxRecord(
                id=r.id,
                event_type=r.event_type,
                payload=r.payload,
                attempts=r.attempts,
                conversation_id=r.conversation_id,
            )
            for r in rows
        ]

    @translate_backend_errors
    async def mark_sent(self, ids: list[int]) -> None:
        if not ids:
            return
        stmt = (
            update(OutboxMessageModel)
            .where(OutboxMessageModel.id.in_(ids))
            .values(status=OutboxStatus.SENT, sent_at=func.now())
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    @translate_backend_errors
    async def mark_failed(self, record_id: int, next_retry_at: datetime) -> None:
        stmt = (
            update(OutboxMessageModel)
            .where(OutboxMessageModel.id == record_id)
            .values(
                status=OutboxStatus.FAILED,
                attempts=OutboxMessageModel.attempts + 1,
                next_retry_at=next_retry_at,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    @translate_backend_errors
    async def mark_dead(self, ids: list[int]) -> None:
        if not ids:
            return
        stmt = (
            update(OutboxMessageModel)
            .where(OutboxMessageModel.id.in_(ids))
            .values(status=OutboxStatus.DEAD)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    @translate_backend_errors
    async def release(self, ids: list[int]) -> None:
        """Return fetched but unpublished records to the queue without counting an attempt."""
        if not ids:
            return
        stmt = (
            update(OutboxMessageModel)
            .where(OutboxMessageModel.id.in_(ids))
            .values(status=OutboxStatus.PENDING)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

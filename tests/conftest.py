"""Shared test fixtures."""
from __future__ import annotations

import dataclasses
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator
from uuid import UUID

import pytest

from match_chat.application.dto.conversation import ConversationSummaryDTO
from match_chat.application.exceptions import ConflictError
from match_chat.application.repositories.outbox import OutboxRecord
from match_chat.domain.entities.conversation import Conversation, normalize_pair
from match_chat.domain.entities.message import Message
from match_chat.infrastructure.db.repositories._cursor import decode_cursor

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def alice() -> UUID:
    return uuid.uuid4()


@pytest.fixture
def bob() -> UUID:
    return uuid.uuid4()


def make_conversation(
    user_a: UUID | None = None,
    user_b: UUID | None = None,
    *,
    conversation_id: UUID | None = None,
    created_at: datetime = T0,
    last_message_at: datetime | None = None,
) -> Conversation:
    user_id_1, user_id_2 = normalize_pair(user_a or uuid.uuid4(), user_b or uuid.uuid4())
    return Conversation(
        id=conversation_id or uuid.uuid4(),
        user_id_1=user_id_1,
        user_id_2=user_id_2,
        last_message_at=last_message_at,
        created_at=created_at,
    )


def make_message(
    conversation: Conversation,
    sender_id: UUID,
    body: str = "hello",
    *,
    created_at: datetime = T0,
    message_id: UUID | None = None,
    read_at: datetime | None = None,
) -> Message:
    return Message(
        id=message_id or uuid.uuid4(),
        conversation_id=conversation.id,
        sender_id=sender_id,
        receiver_id=conversation.other_participant(sender_id),
        body=body,
        media_url=None,
        media_type=None,
        client_msg_id=None,
        created_at=created_at,
        read_at=read_at,
    )


@dataclass
class FakeMessageReader:
    _messages: list[Message] = field(default_factory=list)

    async def get_by_id(self, message_id: UUID) -> Message | None:
        for m in self._messages:
            if m.id == message_id:
                return m
        return None

    def _timeline(self, conversation_id: UUID) -> list[Message]:
        return sorted(
            (m for m in self._messages if m.conversation_id == conversation_id),
            key=lambda m: m.sort_key,
        )

    async def list_messages(
        self,
        conversation_id: UUID,
        *,
        limit: int = 50,
        before: Message | None = None,
        after: Message | None = None,
    ) -> list[Message]:
        timeline = self._timeline(conversation_id)
        if after is not None:
            return [m for m in timeline if m.sort_key > after.sort_key][:limit]
        if before is not None:
            timeline = [m for m in timeline if m.sort_key < before.sort_key]
        return timeline[-limit:]

    async def count_unread(self, user_id: UUID) -> int:
        return sum(1 for m in self._messages if m.receiver_id == user_id and m.read_at is None)


@dataclass
class FakeMessageWriter:
    _reader: FakeMessageReader

    async def create_if_not_exists(self, message: Message) -> tuple[Message, bool]:
        if message.client_msg_id is not None:
            for m in self._reader._messages:
                if (
                    m.conversation_id == message.conversation_id
                    and m.sender_id == message.sender_id
                    and m.client_msg_id == message.client_msg_id
                ):
                    return m, False
        self._reader._messages.append(message)
        return message, True

    def _set_read(self, predicate: Any, ts: datetime) -> int:
        changed = 0
        for i, m in enumerate(self._reader._messages):
            if m.read_at is None and predicate(m):
                self._reader._messages[i] = dataclasses.replace(m, read_at=ts)
                changed += 1
        return changed

    async def mark_read(self, message_id: UUID, receiver_id: UUID, ts: datetime) -> bool:
        return self._set_read(lambda m: m.id == message_id and m.receiver_id == receiver_id, ts) == 1

    async def mark_conversation_read(
        self, conversation_id: UUID, receiver_id: UUID, ts: datetime
    ) -> int:
        return self._set_read(
            lambda m: m.conversation_id == conversation_id and m.receiver_id == receiver_id,
            ts,
        )


@dataclass
class FakeConversationReader:
    _store: dict[UUID, Conversation] = field(default_factory=dict)
    _messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    locked: list[UUID] = field(default_factory=list)

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return self._store.get(conversation_id)

    async def get_for_update(self, conversation_id: UUID) -> Conversation | None:
        self.locked.append(conversation_id)
        return self._store.get(conversation_id)

    async def get_by_pair(self, user_a: UUID, user_b: UUID) -> Conversation | None:
        pair = normalize_pair(user_a, user_b)
        for c in self._store.values():
            if c.participants == pair:
                return c
        return None

    async def list_summaries_for_user(
        self, user_id: UUID, *, cursor: str | None = None, limit: int = 50
    ) -> list[ConversationSummaryDTO]:
        rows = []
        for c in self._store.values():
            if not c.has_participant(user_id):
                continue
            timeline = self._messages._timeline(c.id)
            rows.append(
                ConversationSummaryDTO(
                    conversation_id=c.id,
                    other_user_id=c.other_participant(user_id),
                    last_message=timeline[-1] if timeline else None,
                    unread_count=sum(
                        1 for m in timeline if m.receiver_id == user_id and m.read_at is None
                    ),
                    last_message_at=c.last_message_at,
                    created_at=c.created_at,
                )
            )
        rows.sort(key=lambda r: r.conversation_id)
        rows.sort(key=lambda r: r.activity_at, reverse=True)
        if cursor:
            ts, cid = decode_cursor(cursor)
            rows = [
                r for r in rows
                if r.activity_at < ts or (r.activity_at == ts and r.conversation_id > cid)
            ]
        return rows[:limit]


@dataclass
class FakeConversationWriter:
    _reader: FakeConversationReader

    async def create_if_not_exists(self, conversation: Conversation) -> tuple[Conversation, bool]:
        existing = await self._reader.get_by_pair(conversation.user_id_1, conversation.user_id_2)
        if existing is not None:
            return existing, False
        if conversation.id in self._reader._store:
            raise ConflictError(f"Conversation id {conversation.id} is already taken")
        self._reader._store[conversation.id] = conversation
        return conversation, True

    async def touch_last_message_at(self, conversation_id: UUID, ts: datetime) -> None:
        conv = self._reader._store[conversation_id]
        self._reader._store[conversation_id] = dataclasses.replace(conv, last_message_at=ts)


@dataclass
class FakeOutboxWriter:
    _records: list[dict[str, Any]] = field(default_factory=list)
    _next_id: int = 1
    now: datetime | None = None

    async def add(self, event_type: str, payload: dict[str, Any]) -> None:
        self._records.append(
            {
                "id": self._next_id,
                "event_type": event_type,
                "payload": payload,
                "conversation_id": payload.get("conversation_id"),
                "status": "pending",
                "attempts": 0,
                "next_retry_at": None,
            }
        )
        self._next_id += 1

    async def fetch_pending(self, batch_size: int) -> list[OutboxRecord]:
        now = self.now or datetime.now(timezone.utc)

        def waiting(r: dict[str, Any]) -> bool:
            return r["status"] == "failed" and r["next_retry_at"] > now

        def blocked(r: dict[str, Any]) -> bool:
            return r["conversation_id"] is not None and any(
                e["conversation_id"] == r["conversation_id"]
                and (e["status"] == "processing" or waiting(e))
                for e in self._records
                if e["id"] < r["id"]
            )

        due = [
            r for r in self._records
            if r["status"] in ("pending", "failed") and not waiting(r) and not blocked(r)
        ][:batch_size]
        for r in due:
            r["status"] = "processing"
        return [
            OutboxRecord(
                r["id"], r["event_type"], r["payload"], r["attempts"],
                UUID(r["conversation_id"]) if r["conversation_id"] else None,
            )
            for r in due
        ]

    def _by_id(self, record_id: int) -> dict[str, Any]:
        return next(r for r in self._records if r["id"] == record_id)

    async def mark_sent(self, ids: list[int]) -> None:
        for record_id in ids:
            self._by_id(record_id)["status"] = "sent"

    async def mark_failed(self, record_id: int, next_retry_at: datetime) -> None:
        r = self._by_id(record_id)
        r["status"] = "failed"
        r["attempts"] += 1
        r["next_retry_at"] = next_retry_at

    async def mark_dead(self, ids: list[int]) -> None:
        for record_id in ids:
            self._by_id(record_id)["status"] = "dead"

    async def release(self, ids: list[int]) -> None:
        for record_id in ids:
            self._by_id(record_id)["status"] = "pending"

    def statuses(self) -> list[str]:
        return [r["status"] for r in self._records]


@dataclass
class FakeUoW:
    """In-memory UoW for unit tests."""
    messages: FakeMessageReader = field(default_factory=FakeMessageReader)
    messages_w: FakeMessageWriter | None = None
    conversations: FakeConversationReader | None = None
    conversations_w: FakeConversationWriter | None = None
    outbox: FakeOutboxWriter = field(default_factory=FakeOutboxWriter)
    commits: int = 0
    rollbacks: int = 0

    def __post_init__(self) -> None:
        if self.messages_w is None:
            self.messages_w = FakeMessageWriter(self.messages)
        if self.conversations is None:
            self.conversations = FakeConversationReader(_messages=self.messages)
        if self.conversations_w is None:
            self.conversations_w = FakeConversationWriter(self.conversations)

    @property
    def _committed(self) -> bool:
        return self.commits > 0

    def add_conversation(self, conversation: Conversation) -> Conversation:
        self.conversations._store[conversation.id] = conversation
        return conversation

    def add_message(self, message: Message) -> Message:
        self.messages._messages.append(message)
        return message

    async def flush(self) -> None:
        pass

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1


def uow_factory_for(uow: FakeUoW) -> Any:
    """Stand-in for ``app.state.uow_factory`` that always hands out ``uow``."""

    @asynccontextmanager
    async def _factory() -> AsyncIterator[FakeUoW]:
        yield uow

    return _factory


def seconds(n: float) -> timedelta:
    return timedelta(seconds=n)

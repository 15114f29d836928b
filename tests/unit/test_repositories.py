"""Statement-level checks for the PostgreSQL repositories (no database needed)."""
from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from match_chat.application.exceptions import ConflictError, ValidationError
from match_chat.infrastructure.db.mappers import message as message_mapper
from match_chat.infrastructure.db.models.message import MessageModel
from match_chat.infrastructure.db.repositories._cursor import decode_cursor, encode_cursor
from match_chat.infrastructure.db.repositories.conversation import (
    ConversationReaderRepo,
    ConversationWriterRepo,
)
from match_chat.infrastructure.db.repositories.message import (
    MessageReaderRepo,
    MessageWriterRepo,
)
from match_chat.infrastructure.db.repositories.outbox import OutboxWriterRepo
from tests.conftest import T0, make_conversation, make_message, seconds


def _session(result: MagicMock | None = None) -> MagicMock:
    session = MagicMock()
    session.execute = AsyncMock(return_value=result or MagicMock())
    return session


def _sql(session: MagicMock, call: int = 0) -> str:
    stmt = session.execute.await_args_list[call].args[0]
    return str(stmt.compile(dialect=postgresql.dialect()))


@pytest.mark.asyncio
async def test_get_for_update_locks_row():
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    session = _session(result)

    assert await ConversationReaderRepo(session).get_for_update(uuid.uuid4()) is None
    assert "FOR UPDATE" in _sql(session)


@pytest.mark.asyncio
async def test_summaries_are_one_statement():
    result = MagicMock()
    result.all.return_value = []
    session = _session(result)
    cursor = encode_cursor(T0, uuid.uuid4())

    await ConversationReaderRepo(session).list_summaries_for_user(
        uuid.uuid4(), cursor=cursor, limit=20,
    )

    assert session.execute.await_count == 1
    sql = _sql(session)
    assert "LATERAL" in sql
    assert "count(messages.id)" in sql
    assert "read_at IS NULL" in sql
    assert "coalesce(conversations.last_message_at, conversations.created_at) DESC" in sql


@pytest.mark.asyncio
async def test_create_conversation_is_idempotent_on_pair():
    conv = make_conversation()
    result = MagicMock()
    result.scalar_one_or_none.side_effect = [
        None,
        MagicMock(
            id=conv.id,
            user_id_1=conv.user_id_1,
            user_id_2=conv.user_id_2,
            last_message_at=None,
            created_at=conv.created_at,
        ),
    ]
    session = _session(result)

    existing, created = await ConversationWriterRepo(session).create_if_not_exists(conv)

    assert created is False
    assert existing == conv
    assert "ON CONFLICT DO NOTHING" in _sql(session)


@pytest.mark.asyncio
async def test_create_conversation_with_taken_id_is_conflict():
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    session = _session(result)

    with pytest.raises(ConflictError):
        await ConversationWriterRepo(session).create_if_not_exists(make_conversation())
    assert session.execute.await_count == 2


@pytest.mark.asyncio
async def test_list_messages_before_anchor_reads_newest_first_and_flips(alice):
    conv = make_conversation(alice)
    older = make_message(conv, alice, "a", created_at=T0)
    newer = make_message(conv, alice, "b", created_at=T0 + seconds(1))
    anchor = make_message(conv, alice, "c", created_at=T0 + seconds(2))
    result = MagicMock()
    result.scalars.return_value.all.return_value = [
        MessageModel(**message_mapper.entity_to_values(newer)),
        MessageModel(**message_mapper.entity_to_values(older)),
    ]
    session = _session(result)

    page = await MessageReaderRepo(session).list_messages(conv.id, limit=2, before=anchor)

    assert [m.body for m in page] == ["a", "b"]
    sql = _sql(session)
    assert "(messages.created_at, messages.id) < (" in sql
    assert "ORDER BY messages.created_at DESC, messages.id DESC" in sql


@pytest.mark.asyncio
async def test_list_messages_after_anchor_reads_oldest_first(alice):
    conv = make_conversation(alice)
    anchor = make_message(conv, alice)
    result = MagicMock()
    result.scalars.return_value.all.return_value = []
    session = _session(result)

    await MessageReaderRepo(session).list_messages(conv.id, limit=10, after=anchor)

    sql = _sql(session)
    assert "(messages.created_at, messages.id) > (" in sql
    assert "ORDER BY messages.created_at ASC, messages.id ASC" in sql


@pytest.mark.asyncio
async def test_count_unread_is_single_count():
    result = MagicMock()
    result.scalar_one.return_value = 3
    session = _session(result)

    assert await MessageReaderRepo(session).count_unread(uuid.uuid4()) == 3
    sql = _sql(session)
    assert "count(*)" in sql
    assert "messages.read_at IS NULL" in sql


@pytest.mark.asyncio
async def test_mark_read_is_conditional_update():
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    session = _session(result)

    changed = await MessageWriterRepo(session).mark_read(uuid.uuid4(), uuid.uuid4(), T0)

    assert changed is False
    sql = _sql(session)
    assert sql.startswith("UPDATE messages SET read_at=")
    assert "messages.receiver_id = " in sql
    assert "messages.read_at IS NULL" in sql
    assert "RETURNING messages.id" in sql


@pytest.mark.asyncio
async def test_mark_conversation_read_counts_returned_rows():
    result = MagicMock()
    result.scalars.return_value.all.return_value = [uuid.uuid4(), uuid.uuid4()]
    session = _session(result)

    count = await MessageWriterRepo(session).mark_conversation_read(uuid.uuid4(), uuid.uuid4(), T0)

    assert count == 2
    sql = _sql(session)
    assert sql.startswith("UPDATE messages SET read_at=")
    assert "messages.conversation_id = " in sql
    assert "messages.receiver_id = " in sql
    assert "messages.read_at IS NULL" in sql
    assert "RETURNING messages.id" in sql


@pytest.mark.asyncio
async def test_duplicate_client_msg_id_returns_stored_message(alice):
    conv = make_conversation(alice)
    stored = make_message(conv, alice, "first try")
    retry = make_message(conv, alice, "second try")
    result = MagicMock()
    result.scalar_one_or_none.side_effect = [
        None,
        MessageModel(**message_mapper.entity_to_values(stored)),
    ]
    session = _session(result)

    msg, created = await MessageWriterRepo(session).create_if_not_exists(retry)

    assert created is False
    assert msg == stored
    sql = _sql(session)
    assert "ON CONFLICT (conversation_id, sender_id, client_msg_id)" in sql
    assert "client_msg_id IS NOT NULL DO NOTHING" in sql


@pytest.mark.asyncio
async def test_duplicate_client_msg_id_without_visible_row_is_conflict(alice):
    conv = make_conversation(alice)
    result = MagicMock()
    result.scalar_one_or_none.return_value = None
    session = _session(result)

    with pytest.raises(ConflictError):
        await MessageWriterRepo(session).create_if_not_exists(make_message(conv, alice))


@pytest.mark.asyncio
async def test_fetch_pending_skips_records_behind_an_unsent_one():
    result = MagicMock()
    result.scalars.return_value.all.return_value = []
    session = _session(result)

    assert await OutboxWriterRepo(session).fetch_pending(10) == []
    sql = _sql(session)
    assert "NOT (EXISTS (SELECT" in sql
    assert "outbox_messages_1.conversation_id = outbox_messages.conversation_id" in sql
    assert "outbox_messages_1.id < outbox_messages.id" in sql
    assert "FOR UPDATE OF outbox_messages SKIP LOCKED" in sql


def test_cursor_round_trip():
    cid = uuid.uuid4()

    assert decode_cursor(encode_cursor(T0, cid)) == (T0, cid)


@pytest.mark.parametrize("cursor", ["", "bm9wZQ", "!!!"])
def test_invalid_cursor(cursor):
    with pytest.raises(ValidationError):
        decode_cursor(cursor)

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
import pytest_asyncio

from match_chat.application.dto.message import SendMessageDTO
from match_chat.application.ports.clock import FixedClock
from match_chat.domain.events.message_created import EVENT_TYPE
from match_chat.infrastructure.bus.serializer import deserialize_event, serialize_event
from match_chat.infrastructure.realtime.broker import MessageBroker
from match_chat.services import message_service, realtime_service
from match_chat.workers.outbox_worker import (
    MAX_DELAY_SECONDS,
    calc_backoff,
    process_batch,
)
from tests.conftest import T0, FakeUoW, make_conversation

CHANNEL = "chat.fanout"


class RecordingPublisher:
    def __init__(self, fail_times: int = 0) -> None:
        self.published: list[tuple[str, dict[str, Any]]] = []
        self._fail_times = fail_times

    async def publish(self, channel: str, payload: dict[str, Any]) -> None:
        if self._fail_times:
            self._fail_times -= 1
            raise ConnectionError("redis down")
        self.published.append((channel, payload))


async def _run(uow: FakeUoW, publisher: RecordingPublisher, max_attempts: int = 5) -> int:
    return await process_batch(
        uow, publisher, channel=CHANNEL, batch_size=50, max_attempts=max_attempts,
    )


@pytest_asyncio.fixture
async def uow_with_two_messages(alice, bob):
    uow = FakeUoW()
    conv = uow.add_conversation(make_conversation(alice, bob))
    clock = FixedClock(T0)
    for body in ("first", "second"):
        clock.advance(seconds=1)
        await message_service.send_message(
            SendMessageDTO(conversation_id=conv.id, body=body), alice, uow, clock,
        )
    return uow


@pytest.mark.asyncio
async def test_publishes_pending_records_in_order(uow_with_two_messages):
    uow = uow_with_two_messages
    publisher = RecordingPublisher()

    sent = await _run(uow, publisher)

    assert sent == 2
    assert [p["message"]["body"] for _, p in publisher.published] == ["first", "second"]
    assert all(ch == CHANNEL and p["event_type"] == EVENT_TYPE for ch, p in publisher.published)
    assert uow.outbox.statuses() == ["sent", "sent"]
    assert await _run(uow, publisher) == 0


@pytest.mark.asyncio
async def test_failed_publish_holds_back_later_records_of_the_conversation(uow_with_two_messages):
    uow = uow_with_two_messages
    publisher = RecordingPublisher(fail_times=1)

    assert await _run(uow, publisher) == 0
    assert uow.outbox.statuses() == ["failed", "pending"]
    assert uow.outbox._records[0]["attempts"] == 1
    assert uow.outbox._records[1]["attempts"] == 0

    # retry not due yet: the second record must not overtake the first
    assert await _run(uow, publisher) == 0
    assert publisher.published == []

    uow.outbox.now = uow.outbox._records[0]["next_retry_at"] + timedelta(seconds=1)
    assert await _run(uow, publisher) == 2
    assert [p["message"]["body"] for _, p in publisher.published] == ["first", "second"]
    assert uow.outbox.statuses() == ["sent", "sent"]


@pytest.mark.asyncio
async def test_failure_does_not_hold_back_other_conversations(uow_with_two_messages, alice):
    uow = uow_with_two_messages
    other = uow.add_conversation(make_conversation(alice))
    await message_service.send_message(
        SendMessageDTO(conversation_id=other.id, body="elsewhere"), alice, uow, FixedClock(T0),
    )
    publisher = RecordingPublisher(fail_times=1)

    assert await _run(uow, publisher) == 1
    assert uow.outbox.statuses() == ["failed", "pending", "sent"]
    assert [p["message"]["body"] for _, p in publisher.published] == ["elsewhere"]


@pytest.mark.asyncio
async def test_record_over_attempt_limit_is_dead_lettered(uow_with_two_messages):
    uow = uow_with_two_messages
    uow.outbox._records[0]["attempts"] = 3
    publisher = RecordingPublisher()

    assert await _run(uow, publisher, max_attempts=3) == 1
    assert uow.outbox.statuses() == ["dead", "sent"]
    assert len(publisher.published) == 1


def test_backoff_is_capped():
    assert calc_backoff(0, T0) == T0 + timedelta(seconds=5)
    assert calc_backoff(2, T0) == T0 + timedelta(seconds=20)
    assert calc_backoff(30, T0) == T0 + timedelta(seconds=MAX_DELAY_SECONDS)


@pytest.mark.asyncio
async def test_outbox_to_subscriber_end_to_end(alice, bob):
    """Outbox record -> Pub/Sub envelope -> broker -> subscription."""
    uow = FakeUoW()
    conv = uow.add_conversation(make_conversation(alice, bob))
    broker = MessageBroker()
    sub = await realtime_service.subscribe_messages(conv.id, bob, uow, broker)

    class EnvelopePublisher:
        async def publish(self, channel: str, payload: dict[str, Any]) -> None:
            data = dict(payload)
            raw = serialize_event(data.pop("event_type"), data)
            await realtime_service.dispatch_event(broker, *deserialize_event(raw))

    msg, _ = await message_service.send_message(
        SendMessageDTO(conversation_id=conv.id, body="yo"), alice, uow, FixedClock(T0),
    )
    await _run(uow, EnvelopePublisher())

    received = await sub.__anext__()
    assert received == msg

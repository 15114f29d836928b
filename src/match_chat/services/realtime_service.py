"""Realtime fan-out: subscribing to conversations and feeding the broker."""
from __future__ import annotations

import logging
import uuid
from typing import Any

from match_chat.application.policies.permissions import assert_participant
from match_chat.application.uow import UnitOfWork
from match_chat.domain.events.message_created import EVENT_TYPE, MessageCreated
from match_chat.infrastructure.realtime.broker import MessageBroker, Subscription

logger = logging.getLogger(__name__)


async def subscribe_messages(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    uow: UnitOfWork,
    broker: MessageBroker,
) -> Subscription:
    """Open a live stream of new messages for a conversation the user belongs to."""
    conversation = await uow.conversations.get_by_id(conversation_id)
    assert_participant(conversation, user_id)
    return broker.subscribe(conversation_id)


async def dispatch_event(
    broker: MessageBroker,
    event_type: str,
    data: dict[str, Any],
) -> int:
    """Route a bus event to local subscribers. Returns the number of deliveries.

    Events without a message (other event types, empty payloads) are ignored.
    """
    if event_type != EVENT_TYPE:
        return 0
    raw = data.get("message")
    if not raw:
        logger.debug("Ignoring %s event without a message payload", event_type)
        return 0
    message = MessageCreated.from_payload(raw).message
    delivered = broker.publish(message)
    logger.debug(
        "Fanned out message %s to %d subscribers of %s",
        message.id, delivered, message.conversation_id,
    )
    return delivered

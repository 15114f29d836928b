"""In-process publish/subscribe channels keyed by conversation id."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from types import TracebackType
from typing import Self
from uuid import UUID, uuid4

from match_chat.application.exceptions import DisconnectedError
from match_chat.domain.entities.message import Message

logger = logging.getLogger(__name__)

REASON_UNSUBSCRIBED = "unsubscribed"
REASON_OVERFLOW = "overflow"
REASON_SHUTDOWN = "shutdown"
REASON_BUS_LOST = "bus_lost"

_CLOSED = object()
_SEEN_WINDOW = 512


class Subscription:
    """Live message stream for one conversation.

    Iterate with ``async for``. Iteration ends quietly after ``close()``; any
    other termination raises
    ``DisconnectedError`` once the already-buffered messages are consumed.
    """

    def __init__(
        self,
        broker: MessageBroker,
        conversation_id: UUID,
        max_pending: int,
    ) -> None:
        self.id = uuid4().hex
        self.conversation_id = conversation_id
        self.last_message_id: UUID | None = None
        self._broker = broker
        self._max_pending = max_pending
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._seen_ids: set[UUID] = set()
        self._seen_order: deque[UUID] = deque()
        self._closed_reason: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    @property
    def closed_reason(self) -> str | None:
        return self._closed_reason

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _deliver(self, message: Message) -> bool:
        """Enqueue without blocking. Returns False if the subscription is (now) closed."""
        if self.closed:
            return False
        if message.id in self._seen_ids:
            return True
        if self._queue.qsize() >= self._max_pending:
            logger.warning(
                "Subscription %s on %s overflowed (%d pending), disconnecting",
                self.id, self.conversation_id, self._queue.qsize(),
            )
            self._terminate(REASON_OVERFLOW)
            return False
        self._remember(message.id)
        self._queue.put_nowait(message)
        return True

    def _remember(self, message_id: UUID) -> None:
        self._seen_ids.add(message_id)
        self._seen_order.append(message_id)
        if len(self._seen_order) > _SEEN_WINDOW:
            self._seen_ids.discard(self._seen_order.popleft())

    def _terminate(self, reason: str) -> None:
        if self.closed:
            return
        self._closed_reason = reason
        if reason == REASON_UNSUBSCRIBED:
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Unsubscribe and drop anything still buffered."""
        self._broker.unsubscribe(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Message:
        item = await self._queue.get()
        if item is _CLOSED:
            # keep the terminal marker for any later reader
            self._queue.put_nowait(_CLOSED)
            if self._closed_reason == REASON_UNSUBSCRIBED:
                raise StopAsyncIteration
            raise DisconnectedError(self._closed_reason or REASON_SHUTDOWN, self.last_message_id)
        assert isinstance(item, Message)
        self.last_message_id = item.id
        return item

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class MessageBroker:
    """Fans new messages out to the live subscriptions of their conversation.

    ``publish`` never blocks and never raises on behalf of a subscriber.
    """

    def __init__(self, *, max_pending: int = 256) -> None:
        self._max_pending = max_pending
        self._channels: dict[UUID, set[Subscription]] = {}
        self._closed = False

    def subscribe(self, conversation_id: UUID) -> Subscription:
        sub = Subscription(self, conversation_id, self._max_pending)
        if self._closed:
            sub._terminate(REASON_SHUTDOWN)
            return sub
        self._channels.setdefault(conversation_id, set()).add(sub)
        logger.debug(
            "Subscribed %s to %s (total=%d)",
            sub.id, conversation_id, len(self._channels[conversation_id]),
        )
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        self._discard(subscription)
        subscription._terminate(REASON_UNSUBSCRIBED)

    def publish(self, message: Message) -> int:
        """Deliver to every subscriber of the message's conversation. Returns delivery count."""
        subs = self._channels.get(message.conversation_id)
        if not subs:
            return 0
        delivered = 0
        dropped: list[Subscription] = []
        for sub in subs:
            if sub._deliver(message):
                delivered += 1
            else:
                dropped.append(sub)
        for sub in dropped:
            self._discard(sub)
        return delivered

    def subscriber_count(self, conversation_id: UUID) -> int:
        return len(self._channels.get(conversation_id, ()))

    def disconnect_all(self, reason: str) -> int:
        """Terminate every live subscription with ``reason``; the broker stays open.

        Used when the upstream feed was interrupted and subscribers may have
        missed messages. Returns how many subscriptions were ended.
        """
        channels, self._channels = self._channels, {}
        count = 0
        for subs in channels.values():
            for sub in subs:
                sub._terminate(reason)
                count += 1
        if count:
            logger.warning("Disconnected %d subscriptions (%s)", count, reason)
        return count

    def close(self) -> None:
        """Terminate every subscription with a shutdown disconnect."""
        self._closed = True
        self.disconnect_all(REASON_SHUTDOWN)
        logger.info("Message broker closed")

    def _discard(self, subscription: Subscription) -> None:
        subs = self._channels.get(subscription.conversation_id)
        if subs is None:
            return
        subs.discard(subscription)
        if not subs:
            del self._channels[subscription.conversation_id]

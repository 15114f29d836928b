from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from match_chat.api.deps import verifier_for
from match_chat.api.v1.schemas.message import MessageResponse
from match_chat.application.dto.message import SendMessageDTO
from match_chat.application.dto.principal import Principal
from match_chat.application.exceptions import (
    AppError,
    ConflictError,
    DisconnectedError,
    ForbiddenError,
    NotFoundError,
    TransientBackendError,
    ValidationError,
)
from match_chat.config import settings
from match_chat.domain.entities.message import Message
from match_chat.infrastructure.realtime.broker import Subscription
from match_chat.infrastructure.ws.protocol import (
    ConversationRef,
    MarkReadData,
    SendData,
    WsInbound,
    error_frame,
    frame,
)
from match_chat.services import message_service, read_state_service, realtime_service

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


async def _authenticate(websocket: WebSocket, token: str) -> Principal | None:
    try:
        return await verifier_for(websocket.app).verify(token)
    except Exception:
        logger.debug("WS auth failed", exc_info=True)
        return None


def _message_data(message: Message) -> dict[str, Any]:
    return MessageResponse.model_validate(message, from_attributes=True).model_dump(mode="json")


def _error_code(exc: AppError) -> str:
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, ForbiddenError):
        return "forbidden"
    if isinstance(exc, ConflictError):
        return "conflict"
    if isinstance(exc, ValidationError):
        return "invalid_data"
    if isinstance(exc, TransientBackendError):
        return "unavailable"
    return "error"


def _describe(exc: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'data'}: {err['msg']}"
        for err in exc.errors()
    )


@router.websocket("/ws/chat")
async def ws_chat(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    principal = await _authenticate(websocket, token)
    if principal is None:
        await websocket.close(code=4001, reason="Authentication failed")
        return

    await websocket.accept()
    session = ChatSocket(websocket, principal)
    logger.debug("WS connected: %s", principal.principal_key)

    heartbeat_task = asyncio.create_task(
        session.heartbeat(), name=f"ws-heartbeat-{principal.principal_key}",
    )
    try:
        await session.read_loop()
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", principal.principal_key)
    finally:
        heartbeat_task.cancel()
        await session.close()
        logger.debug("WS disconnected: %s", principal.principal_key)


class ChatSocket:
    """One client connection: its live subscriptions and inbound command handling."""

    def __init__(self, websocket: WebSocket, principal: Principal) -> None:
        self._ws = websocket
        self._principal = principal
        self._send_lock = asyncio.Lock()
        self._subscriptions: dict[UUID, tuple[Subscription, asyncio.Task[None]]] = {}
        self._handlers: dict[str, Callable[[dict[str, Any]], Awaitable[None]]] = {
            "ping": self._on_ping,
            "subscribe": self._on_subscribe,
            "unsubscribe": self._on_unsubscribe,
            "message.send": self._on_send,
            "mark_read": self._on_mark_read,
        }

    @property
    def _state(self) -> Any:
        return self._ws.app.state

    async def send(self, raw: str) -> None:
        async with self._send_lock:
            await self._ws.send_text(raw)

    async def heartbeat(self) -> None:
        interval = settings.WS_HEARTBEAT_SECONDS
        try:
            while True:
                await asyncio.sleep(interval)
                await self.send(frame("pong"))
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.debug("Heartbeat stopped", exc_info=True)

    async def read_loop(self) -> None:
        while True:
            raw = await self._ws.receive_text()
            try:
                msg = WsInbound.model_validate_json(raw)
            except PydanticValidationError:
                await self.send(error_frame("invalid_payload"))
                continue

            handler = self._handlers.get(msg.type)
            if handler is None:
                await self.send(error_frame("unknown_type", type=msg.type))
                continue

            try:
                await handler(msg.data)
            except AppError as exc:
                await self.send(error_frame(_error_code(exc), detail=exc.detail, type=msg.type))
            except PydanticValidationError as exc:
                await self.send(error_frame("invalid_data", detail=_describe(exc), type=msg.type))

    async def close(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, {}
        tasks = []
        for sub, task in subscriptions.values():
            sub.close()
            task.cancel()
            tasks.append(task)
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _on_ping(self, data: dict[str, Any]) -> None:
        await self.send(frame("pong"))

    async def _on_subscribe(self, data: dict[str, Any]) -> None:
        conversation_id = ConversationRef.model_validate(data).conversation_id
        if conversation_id not in self._subscriptions:
            async with self._state.uow_factory() as uow:
                sub = await realtime_service.subscribe_messages(
                    conversation_id, self._principal.user_id, uow, self._state.broker,
                )
            task = asyncio.create_task(self._pump(sub), name=f"ws-pump-{sub.id}")
            self._subscriptions[conversation_id] = (sub, task)
        await self.send(frame("subscribed", conversation_id=str(conversation_id)))

    async def _on_unsubscribe(self, data: dict[str, Any]) -> None:
        conversation_id = ConversationRef.model_validate(data).conversation_id
        entry = self._subscriptions.pop(conversation_id, None)
        if entry is not None:
            sub, task = entry
            sub.close()
            task.cancel()
        await self.send(frame("unsubscribed", conversation_id=str(conversation_id)))

    async def _on_send(self, data: dict[str, Any]) -> None:
        payload = SendData.model_validate(data)
        dto = SendMessageDTO(
            conversation_id=payload.conversation_id,
            body=payload.body or "",
            receiver_id=payload.receiver_id,
            media_url=payload.media_url,
            media_type=payload.media_type,
            client_msg_id=payload.client_msg_id,
        )
        async with self._state.uow_factory() as uow:
            msg, created = await message_service.send_message(dto, self._principal.user_id, uow)
        # subscribers, this socket included, get message.created through the broker
        await self.send(frame("message.sent", message=_message_data(msg), created=created))

    async def _on_mark_read(self, data: dict[str, Any]) -> None:
        target = MarkReadData.model_validate(data)
        async with self._state.uow_factory() as uow:
            if target.message_id is not None:
                message_id = target.message_id
                await read_state_service.mark_message_read(message_id, self._principal.user_id, uow)
                await self.send(frame("read", message_id=str(message_id)))
                return
            conversation_id = target.conversation_id
            count = await read_state_service.mark_conversation_read(
                conversation_id, self._principal.user_id, uow,
            )
        await self.send(frame("read", conversation_id=str(conversation_id), marked_read=count))

    async def _pump(self, sub: Subscription) -> None:
        try:
            async for message in sub:
                await self.send(
                    frame(
                        "message.created",
                        conversation_id=str(message.conversation_id),
                        message=_message_data(message),
                    )
                )
        except DisconnectedError as exc:
            entry = self._subscriptions.get(sub.conversation_id)
            if entry is not None and entry[0] is sub:
                del self._subscriptions[sub.conversation_id]
            await self.send(
                frame(
                    "subscription.closed",
                    conversation_id=str(sub.conversation_id),
                    reason=exc.reason,
                    last_message_id=str(exc.last_message_id) if exc.last_message_id else None,
                )
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Subscription pump failed for %s", sub.conversation_id)
            sub.close()

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from match_chat.api.deps import CurrentPrincipal, UoWDep
from match_chat.api.v1.schemas.message import MessageResponse, SendMessageRequest
from match_chat.application.dto.message import SendMessageDTO
from match_chat.services import message_service, read_state_service

router = APIRouter(prefix="/api/v1/chat", tags=["messages"])


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=list[MessageResponse],
)
async def list_messages(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
    limit: int = Query(50, ge=1, le=200),
    before_id: UUID | None = Query(None),
    after_id: UUID | None = Query(None),
) -> list[MessageResponse]:
    messages = await message_service.list_messages(
        conversation_id,
        principal.user_id,
        uow,
        limit=limit,
        before_id=before_id,
        after_id=after_id,
    )
    return [MessageResponse.model_validate(m, from_attributes=True) for m in messages]


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=201,
)
async def send_message(
    conversation_id: UUID,
    body: SendMessageRequest,
    principal: CurrentPrincipal,
    uow: UoWDep,
    response: Response,
) -> MessageResponse:
    dto = SendMessageDTO(
        conversation_id=conversation_id,
        body=body.body,
        receiver_id=body.receiver_id,
        media_url=body.media_url,
        media_type=body.media_type.value if body.media_type else None,
        client_msg_id=body.client_msg_id,
    )
    msg, created = await message_service.send_message(dto, principal.user_id, uow)
    if not created:
        response.status_code = status.HTTP_200_OK
    return MessageResponse.model_validate(msg, from_attributes=True)


@router.post("/messages/{message_id}/read", status_code=204)
async def mark_message_read(
    message_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> Response:
    await read_state_service.mark_message_read(message_id, principal.user_id, uow)
    return Response(status_code=204)

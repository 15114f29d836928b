from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query

from match_chat.api.deps import CurrentPrincipal, UoWDep
from match_chat.api.v1.schemas.common import PaginatedResponse
from match_chat.api.v1.schemas.conversation import (
    ConversationSummaryResponse,
    MarkReadResponse,
    UnreadCountResponse,
)
from match_chat.services import conversation_service, read_state_service

router = APIRouter(prefix="/api/v1/chat/conversations", tags=["conversations"])


@router.get("", response_model=PaginatedResponse[ConversationSummaryResponse])
async def list_conversations(
    principal: CurrentPrincipal,
    uow: UoWDep,
    cursor: str | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
) -> PaginatedResponse[ConversationSummaryResponse]:
    page = await conversation_service.list_user_conversations(
        principal.user_id, uow, cursor=cursor, limit=limit,
    )
    return PaginatedResponse[ConversationSummaryResponse](
        items=[
            ConversationSummaryResponse.model_validate(s, from_attributes=True)
            for s in page.items
        ],
        next_cursor=page.next_cursor,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> UnreadCountResponse:
    count = await read_state_service.get_unread_count(principal.user_id, uow)
    return UnreadCountResponse(unread_count=count)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_conversation_read(
    conversation_id: UUID,
    principal: CurrentPrincipal,
    uow: UoWDep,
) -> MarkReadResponse:
    count = await read_state_service.mark_conversation_read(
        conversation_id, principal.user_id, uow,
    )
    return MarkReadResponse(marked_read=count)

"""Chat conversation endpoints."""

from fastapi import APIRouter, Query, status

from tradelink.data.schema import ConversationStatus
from tradelink.services import ChatService

from ..deps import AdminUser, CurrentUser, HubDep, SessionDep
from ..schemas import (
    AssignConversationRequest,
    ChatMessageRequest,
    ChatMessageResponse,
    ConversationCreateRequest,
    ConversationResponse,
    CountResponse,
    UnreadCountsResponse,
)

router = APIRouter(prefix="/api/v1/conversations", tags=["Chat"])


@router.post("", response_model=ConversationResponse, status_code=status.HTTP_201_CREATED)
def create_conversation(
    body: ConversationCreateRequest, actor: CurrentUser, session: SessionDep, hub: HubDep
):
    return ChatService(session, hub).create_conversation(
        actor,
        body.type,
        body.participant_id,
        subject=body.subject,
        product_id=body.product_id,
        initial_message=body.initial_message,
    )


@router.get("", response_model=list[ConversationResponse])
def list_conversations(
    actor: CurrentUser,
    session: SessionDep,
    conversation_status: ConversationStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    return ChatService(session).list_conversations(
        actor, status=conversation_status, limit=limit, offset=offset
    )


@router.get("/unread", response_model=UnreadCountsResponse)
def unread_counts(actor: CurrentUser, session: SessionDep):
    return ChatService(session).unread_counts(actor)


@router.get("/search", response_model=list[ChatMessageResponse])
def search_messages(
    actor: CurrentUser,
    session: SessionDep,
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
):
    return ChatService(session).search_messages(actor, q, limit=limit)


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(conversation_id: int, actor: CurrentUser, session: SessionDep):
    return ChatService(session).get_conversation(conversation_id, actor)


@router.get("/{conversation_id}/messages", response_model=list[ChatMessageResponse])
def get_messages(
    conversation_id: int,
    actor: CurrentUser,
    session: SessionDep,
    limit: int = Query(50, ge=1, le=200),
    before_id: int | None = None,
):
    """Oldest first; pass ``before_id`` to page back through history."""
    return ChatService(session).get_messages(conversation_id, actor, limit=limit, before_id=before_id)


@router.post(
    "/{conversation_id}/messages",
    response_model=ChatMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    conversation_id: int,
    body: ChatMessageRequest,
    actor: CurrentUser,
    session: SessionDep,
    hub: HubDep,
):
    return ChatService(session, hub).send_message(
        conversation_id, actor, body.message, attachments=body.attachments
    )


@router.post("/{conversation_id}/read", response_model=CountResponse)
def mark_read(conversation_id: int, actor: CurrentUser, session: SessionDep):
    return CountResponse(count=ChatService(session).mark_read(conversation_id, actor))


@router.post("/{conversation_id}/archive", response_model=ConversationResponse)
def archive_conversation(conversation_id: int, actor: CurrentUser, session: SessionDep, hub: HubDep):
    return ChatService(session, hub).archive(conversation_id, actor)


@router.post("/{conversation_id}/close", response_model=ConversationResponse)
def close_conversation(conversation_id: int, actor: AdminUser, session: SessionDep, hub: HubDep):
    return ChatService(session, hub).close(conversation_id, actor)


@router.post("/{conversation_id}/assign", response_model=ConversationResponse)
def assign_conversation(
    conversation_id: int,
    body: AssignConversationRequest,
    actor: AdminUser,
    session: SessionDep,
    hub: HubDep,
):
    return ChatService(session, hub).assign(conversation_id, body.admin_id, actor)

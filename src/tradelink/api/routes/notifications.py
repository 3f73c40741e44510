"""Notification inbox endpoints."""

from fastapi import APIRouter, Query

from tradelink.services import NotificationService

from ..deps import CurrentUser, SessionDep
from ..schemas import CountResponse, NotificationResponse

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


@router.get("", response_model=list[NotificationResponse])
def list_notifications(
    actor: CurrentUser,
    session: SessionDep,
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    return NotificationService(session).list_notifications(
        actor.user_id, unread_only=unread_only, limit=limit, offset=offset
    )


@router.get("/unread-count", response_model=CountResponse)
def unread_count(actor: CurrentUser, session: SessionDep):
    return CountResponse(count=NotificationService(session).unread_count(actor.user_id))


@router.post("/read-all", response_model=CountResponse)
def mark_all_read(actor: CurrentUser, session: SessionDep):
    return CountResponse(count=NotificationService(session).mark_all_read(actor.user_id))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_read(notification_id: int, actor: CurrentUser, session: SessionDep):
    return NotificationService(session).mark_read(notification_id, actor.user_id)

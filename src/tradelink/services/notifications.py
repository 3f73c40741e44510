"""User notifications and real-time push delivery.

Notifications are persisted rows plus a WebSocket push. Pushes are queued
on the SQLAlchemy session and only leave the process once the session
commits, so a rolled-back request never reaches a client.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel
from sqlalchemy import event, func, select, update
from sqlalchemy.orm import Session

from tradelink.data.schema import Notification, NotificationType
from tradelink.infrastructure.logging_config import get_logger
from tradelink.infrastructure.metrics import (
    notifications_sent_total,
    websocket_connections_active,
    websocket_messages_total,
)
from tradelink.services.errors import NotFoundError, PermissionDeniedError

logger = get_logger(__name__)

_OUTBOX_KEY = "tradelink_outbox"


class WSEventType(str, Enum):
    """WebSocket event types."""

    CONNECTED = "connected"
    NOTIFICATION = "notification"
    CHAT_MESSAGE = "chat_message"
    TYPING = "typing"
    CONVERSATION_STATUS = "conversation_status"
    ERROR = "error"
    PING = "ping"
    PONG = "pong"


class WSEvent(BaseModel):
    """WebSocket event structure."""

    type: WSEventType
    data: dict[str, Any] = {}
    timestamp: str = ""

    def __init__(self, **data):
        if "timestamp" not in data or not data["timestamp"]:
            data["timestamp"] = datetime.now().isoformat()
        super().__init__(**data)


class NotificationHub:
    """Manage WebSocket connections, keyed by user id.

    A user may hold several sockets (tabs, devices); every event goes to
    all of them.
    """

    def __init__(self):
        self.active_connections: dict[int, list[WebSocket]] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()

    async def connect(self, websocket: WebSocket, user_id: int) -> None:
        """Accept and store a new connection."""
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        self.active_connections.setdefault(user_id, []).append(websocket)
        websocket_connections_active.inc()
        logger.info("websocket_connected", user_id=user_id)

    def disconnect(self, websocket: WebSocket, user_id: int) -> None:
        """Remove a connection."""
        sockets = self.active_connections.get(user_id, [])
        if websocket in sockets:
            sockets.remove(websocket)
            websocket_connections_active.dec()
        if not sockets:
            self.active_connections.pop(user_id, None)

    def is_connected(self, user_id: int) -> bool:
        return bool(self.active_connections.get(user_id))

    async def send_event(self, user_id: int, event: WSEvent) -> int:
        """Send an event to every socket of a user; return how many got it."""
        sent = 0
        for websocket in list(self.active_connections.get(user_id, [])):
            try:
                await websocket.send_json(event.model_dump(mode="json"))
                sent += 1
            except Exception:
                logger.warning("websocket_send_failed", user_id=user_id, exc_info=True)
                self.disconnect(websocket, user_id)
        if sent:
            websocket_messages_total.labels(direction="sent").inc(sent)
        return sent

    async def broadcast(self, event: WSEvent) -> None:
        """Broadcast an event to all connections."""
        for user_id in list(self.active_connections):
            await self.send_event(user_id, event)

    def publish(self, user_id: int, event: WSEvent) -> bool:
        """Schedule delivery of an event from any thread.

        Returns False when the user has no open socket.
        """
        loop = self._loop
        if loop is None or loop.is_closed() or not self.is_connected(user_id):
            return False

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task = loop.create_task(self.send_event(user_id, event))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            asyncio.run_coroutine_threadsafe(self.send_event(user_id, event), loop)
        notifications_sent_total.labels(channel="push").inc()
        return True


@event.listens_for(Session, "after_commit")
def _flush_outbox(session: Session) -> None:
    for hub, user_id, ws_event in session.info.pop(_OUTBOX_KEY, []):
        hub.publish(user_id, ws_event)


@event.listens_for(Session, "after_soft_rollback")
def _discard_outbox(session: Session, previous_transaction) -> None:
    session.info.pop(_OUTBOX_KEY, None)


def notification_payload(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "related_id": notification.related_id,
        "related_type": notification.related_type,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class NotificationService:
    """Create, list and push user notifications."""

    def __init__(self, session: Session, hub: NotificationHub | None = None):
        self.session = session
        self.hub = hub

    def create_notification(
        self,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        related_id: int | None = None,
        related_type: str | None = None,
    ) -> Notification:
        """Persist a notification and queue its push for after commit."""
        notification = Notification(
            user_id=user_id,
            type=NotificationType(type).value,
            title=title,
            message=message,
            related_id=related_id,
            related_type=related_type,
            is_read=False,
        )
        self.session.add(notification)
        self.session.flush()
        notifications_sent_total.labels(channel="stored").inc()

        self._queue(user_id, WSEvent(type=WSEventType.NOTIFICATION, data=notification_payload(notification)))
        logger.debug("notification_created", user_id=user_id, title=title)
        return notification

    def publish(self, user_id: int, event_type: WSEventType, data: dict[str, Any]) -> None:
        """Queue a push-only event (chat messages, status changes)."""
        self._queue(user_id, WSEvent(type=event_type, data=data))

    def _queue(self, user_id: int, ws_event: WSEvent) -> None:
        if self.hub is None:
            return
        self.session.info.setdefault(_OUTBOX_KEY, []).append((self.hub, user_id, ws_event))

    def list_notifications(
        self, user_id: int, unread_only: bool = False, limit: int = 50, offset: int = 0
    ) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
        return list(self.session.scalars(stmt.limit(limit).offset(offset)))

    def mark_read(self, notification_id: int, user_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.user_id != user_id:
            raise PermissionDeniedError("Cannot modify another user's notification")
        notification.is_read = True
        return notification

    def mark_all_read(self, user_id: int) -> int:
        result = self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        return result.rowcount

    def unread_count(self, user_id: int) -> int:
        return self.session.scalar(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read.is_(False)
            )
        )

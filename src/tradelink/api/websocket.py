"""WebSocket endpoint for real-time notifications, chat pushes and typing."""

import json

import jwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from tradelink.data.database import Database
from tradelink.data.schema import User, UserRole
from tradelink.infrastructure import bind_actor, get_logger, websocket_messages_total
from tradelink.middleware.auth import AuthConfig, decode_identity
from tradelink.services import Actor, ChatService, MarketplaceError, NotificationHub, WSEvent, WSEventType

logger = get_logger(__name__)

router = APIRouter(tags=["WebSocket"])

# Close code for a missing, invalid or mismatched token
WS_UNAUTHORIZED = 4401


def _lookup_role(database: Database, user_id: int) -> str | None:
    with database.session_scope() as session:
        user = session.get(User, user_id)
        return user.role if user is not None else None


def _typing_recipients(database: Database, conversation_id: int, actor: Actor) -> set[int]:
    with database.session_scope() as session:
        return ChatService(session).typing_recipients(conversation_id, actor)


async def _authenticate(websocket: WebSocket, user_id: int) -> str | None:
    """Resolve the socket owner's role, or None when the connection is refused."""
    config = AuthConfig.from_env()
    if not config.enabled:
        return await run_in_threadpool(_lookup_role, websocket.app.state.database, user_id)

    token = websocket.query_params.get("token")
    if not token:
        return None
    try:
        token_user_id, role = decode_identity(token, config)
    except jwt.InvalidTokenError as e:
        logger.warning("websocket_auth_failed", user_id=user_id, error=str(e))
        return None
    if token_user_id != user_id:
        logger.warning("websocket_auth_mismatch", user_id=user_id, token_user_id=token_user_id)
        return None
    return role


async def _send_error(hub: NotificationHub, user_id: int, message: str) -> None:
    await hub.send_event(user_id, WSEvent(type=WSEventType.ERROR, data={"error": message}))


async def _relay_typing(hub: NotificationHub, database: Database, actor: Actor, data: dict) -> None:
    conversation_id = data.get("conversation_id")
    if not isinstance(conversation_id, int):
        await _send_error(hub, actor.user_id, "conversation_id is required")
        return

    try:
        recipients = await run_in_threadpool(_typing_recipients, database, conversation_id, actor)
    except MarketplaceError as e:
        await _send_error(hub, actor.user_id, e.message)
        return

    event = WSEvent(
        type=WSEventType.TYPING,
        data={
            "conversation_id": conversation_id,
            "user_id": actor.user_id,
            "is_typing": bool(data.get("is_typing", True)),
        },
    )
    for recipient in sorted(recipients):
        await hub.send_event(recipient, event)


@router.websocket("/ws/notifications/{user_id}")
async def websocket_notifications(websocket: WebSocket, user_id: int):
    """
    WebSocket endpoint for a user's real-time events.

    Events sent to client:
    - connected: Connection established
    - notification: A notification was stored for the user
    - chat_message: New message in one of the user's conversations
    - typing: Another participant is typing
    - conversation_status: A conversation was archived, closed or assigned
    - pong: Reply to ping
    - error: Error occurred

    Events received from client:
    - ping: Keep-alive ping
    - typing: ``{"conversation_id": int, "is_typing": bool}`` in ``data``
    """
    role = await _authenticate(websocket, user_id)
    if role is None:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    hub: NotificationHub = websocket.app.state.hub
    database: Database = websocket.app.state.database
    actor = Actor(user_id=user_id, role=UserRole(role))
    bind_actor(user_id, role)

    await hub.connect(websocket, user_id)
    await hub.send_event(
        user_id,
        WSEvent(
            type=WSEventType.CONNECTED,
            data={"user_id": user_id, "message": "Connected to TradeLink notifications"},
        ),
    )

    try:
        while True:
            raw = await websocket.receive_text()
            websocket_messages_total.labels(direction="received").inc()

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                await _send_error(hub, user_id, "Message must be valid JSON")
                continue
            if not isinstance(data, dict):
                await _send_error(hub, user_id, "Message must be a JSON object")
                continue

            event_type = data.get("type")

            if event_type == WSEventType.PING.value:
                await hub.send_event(user_id, WSEvent(type=WSEventType.PONG, data={}))
                continue

            if event_type == WSEventType.TYPING.value:
                payload = data.get("data") or {}
                if not isinstance(payload, dict):
                    await _send_error(hub, user_id, "data must be an object")
                    continue
                await _relay_typing(hub, database, actor, payload)
                continue

            await _send_error(hub, user_id, f"Unknown event type: {event_type}")

    except WebSocketDisconnect:
        hub.disconnect(websocket, user_id)
        logger.info("websocket_disconnected", user_id=user_id)
    except Exception as e:
        logger.exception("websocket_error", user_id=user_id, error=str(e))
        hub.disconnect(websocket, user_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)

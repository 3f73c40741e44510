"""Buyer, supplier and admin conversations."""

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    ChatMessage,
    Conversation,
    ConversationStatus,
    ConversationType,
    UserRole,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.services.accounts import AccountService
from tradelink.services.actor import Actor
from tradelink.services.credit import CreditService
from tradelink.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from tradelink.services.notifications import NotificationHub, NotificationService, WSEventType
from tradelink.utils.helpers import truncate_text, utcnow

logger = get_logger(__name__)

# Conversation type -> the two roles taking part in it
CONVERSATION_ROLES: dict[ConversationType, tuple[UserRole, UserRole]] = {
    ConversationType.BUYER_SUPPLIER: (UserRole.BUYER, UserRole.SUPPLIER),
    ConversationType.BUYER_ADMIN: (UserRole.BUYER, UserRole.ADMIN),
    ConversationType.SUPPLIER_ADMIN: (UserRole.SUPPLIER, UserRole.ADMIN),
}

ROLE_COLUMNS = {
    UserRole.BUYER: "buyer_id",
    UserRole.SUPPLIER: "supplier_id",
    UserRole.ADMIN: "admin_id",
}


def participants(conversation: Conversation) -> set[int]:
    ids = {conversation.buyer_id, conversation.supplier_id, conversation.admin_id}
    if conversation.assigned_admin:
        ids.add(conversation.assigned_admin)
    ids.discard(None)
    return ids


def message_payload(message: ChatMessage) -> dict:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_id": message.sender_id,
        "sender_type": message.sender_type,
        "message": message.message,
        "attachments": message.attachments or [],
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


class ChatService:
    def __init__(self, session: Session, hub: NotificationHub | None = None):
        self.session = session
        self.hub = hub
        self.notifications = NotificationService(session, hub)

    def _user_filter(self, actor: Actor):
        if actor.is_admin:
            return or_(Conversation.admin_id == actor.user_id, Conversation.assigned_admin == actor.user_id)
        return getattr(Conversation, ROLE_COLUMNS[actor.role]) == actor.user_id

    def get_conversation(self, conversation_id: int, actor: Actor) -> Conversation:
        conversation = self.session.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if not actor.is_admin and actor.user_id not in participants(conversation):
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def _broadcast_status(self, conversation: Conversation, actor: Actor, **extra) -> None:
        data = {"conversation_id": conversation.id, "status": conversation.status, "changed_by": actor.user_id}
        data.update(extra)
        for user_id in participants(conversation) - {actor.user_id}:
            self.notifications.publish(user_id, WSEventType.CONVERSATION_STATUS, data)

    def create_conversation(
        self,
        actor: Actor,
        type: ConversationType | str,
        participant_id: int,
        subject: str | None = None,
        product_id: int | None = None,
        initial_message: str | None = None,
    ) -> Conversation:
        conversation_type = ConversationType(type)
        roles = CONVERSATION_ROLES[conversation_type]
        if actor.role not in roles:
            raise PermissionDeniedError(
                f"{actor.role.value.capitalize()}s cannot create {conversation_type.value} conversations"
            )
        if participant_id == actor.user_id:
            raise ValidationError("Cannot start a conversation with yourself")

        counter_role = roles[1] if actor.role == roles[0] else roles[0]
        AccountService(self.session).get_user_with_role(participant_id, counter_role)

        if actor.is_supplier:
            CreditService(self.session, self.hub).ensure_not_restricted(actor.user_id)

        conversation = Conversation(
            type=conversation_type.value,
            subject=subject,
            product_id=product_id,
            status=ConversationStatus.ACTIVE.value,
        )
        setattr(conversation, ROLE_COLUMNS[actor.role], actor.user_id)
        setattr(conversation, ROLE_COLUMNS[counter_role], participant_id)
        self.session.add(conversation)
        self.session.flush()
        logger.info("conversation_created", conversation_id=conversation.id, type=conversation_type.value)

        if initial_message:
            self.send_message(conversation.id, actor, initial_message)
        return conversation

    def send_message(
        self,
        conversation_id: int,
        actor: Actor,
        message: str,
        attachments: list[str] | None = None,
    ) -> ChatMessage:
        conversation = self.get_conversation(conversation_id, actor)
        if conversation.status == ConversationStatus.CLOSED.value:
            raise ConflictError("Conversation is closed")
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty")
        if actor.is_supplier:
            CreditService(self.session, self.hub).ensure_not_restricted(actor.user_id)

        now = utcnow()
        entry = ChatMessage(
            conversation_id=conversation.id,
            sender_id=actor.user_id,
            sender_type=actor.role.value,
            message=message,
            attachments=attachments or [],
            is_read=False,
            created_at=now,
        )
        self.session.add(entry)
        if conversation.status == ConversationStatus.ARCHIVED.value:
            conversation.status = ConversationStatus.ACTIVE.value
        conversation.last_message_at = now
        conversation.updated_at = now
        self.session.flush()

        payload = message_payload(entry)
        payload["preview"] = truncate_text(message, 100)
        for user_id in participants(conversation) - {actor.user_id}:
            self.notifications.publish(user_id, WSEventType.CHAT_MESSAGE, payload)
        return entry

    def list_conversations(
        self, actor: Actor, status: ConversationStatus | None = None, limit: int = 50, offset: int = 0
    ) -> list[Conversation]:
        stmt = select(Conversation).where(self._user_filter(actor))
        if status is not None:
            stmt = stmt.where(Conversation.status == ConversationStatus(status).value)
        stmt = stmt.order_by(
            Conversation.last_message_at.desc().nulls_last(), Conversation.id.desc()
        ).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def get_messages(
        self, conversation_id: int, actor: Actor, limit: int = 50, before_id: int | None = None
    ) -> list[ChatMessage]:
        """Messages oldest first; ``before_id`` pages backwards."""
        conversation = self.get_conversation(conversation_id, actor)
        stmt = select(ChatMessage).where(ChatMessage.conversation_id == conversation.id)
        if before_id is not None:
            stmt = stmt.where(ChatMessage.id < before_id)
        newest = list(self.session.scalars(stmt.order_by(ChatMessage.id.desc()).limit(limit)))
        return list(reversed(newest))

    def mark_read(self, conversation_id: int, actor: Actor) -> int:
        conversation = self.get_conversation(conversation_id, actor)
        result = self.session.execute(
            update(ChatMessage)
            .where(
                ChatMessage.conversation_id == conversation.id,
                ChatMessage.sender_id != actor.user_id,
                ChatMessage.is_read.is_(False),
            )
            .values(is_read=True)
        )
        return result.rowcount

    def unread_counts(self, actor: Actor) -> dict:
        rows = self.session.execute(
            select(ChatMessage.conversation_id, func.count(ChatMessage.id))
            .join(Conversation, Conversation.id == ChatMessage.conversation_id)
            .where(
                self._user_filter(actor),
                ChatMessage.sender_id != actor.user_id,
                ChatMessage.is_read.is_(False),
            )
            .group_by(ChatMessage.conversation_id)
        )
        by_conversation = {conversation_id: count for conversation_id, count in rows}
        return {
            "total": sum(by_conversation.values()),
            "conversations": len(by_conversation),
            "by_conversation": by_conversation,
        }

    def archive(self, conversation_id: int, actor: Actor) -> Conversation:
        conversation = self.get_conversation(conversation_id, actor)
        if actor.user_id not in participants(conversation):
            raise PermissionDeniedError("Only participants can archive a conversation")
        if conversation.status == ConversationStatus.CLOSED.value:
            raise ConflictError("Conversation is closed")
        conversation.status = ConversationStatus.ARCHIVED.value
        conversation.updated_at = utcnow()
        self.session.flush()
        self._broadcast_status(conversation, actor)
        return conversation

    def close(self, conversation_id: int, actor: Actor) -> Conversation:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can close conversations")
        conversation = self.get_conversation(conversation_id, actor)
        conversation.status = ConversationStatus.CLOSED.value
        conversation.updated_at = utcnow()
        self.session.flush()
        self._broadcast_status(conversation, actor)
        logger.info("conversation_closed", conversation_id=conversation.id, admin_id=actor.user_id)
        return conversation

    def assign(self, conversation_id: int, admin_id: int, actor: Actor) -> Conversation:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can assign conversations")
        conversation = self.get_conversation(conversation_id, actor)
        AccountService(self.session).get_user_with_role(admin_id, UserRole.ADMIN)

        conversation.assigned_admin = admin_id
        conversation.updated_at = utcnow()
        self.session.flush()

        self.notifications.create_notification(
            admin_id,
            "Conversation Assigned",
            "You have been assigned to a support conversation",
            related_id=conversation.id,
            related_type="chat",
        )
        self._broadcast_status(conversation, actor, assigned_to=admin_id)
        logger.info("conversation_assigned", conversation_id=conversation.id, admin_id=admin_id)
        return conversation

    def search_messages(self, actor: Actor, query: str, limit: int = 50) -> list[ChatMessage]:
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty")
        stmt = (
            select(ChatMessage)
            .join(Conversation, Conversation.id == ChatMessage.conversation_id)
            .where(and_(self._user_filter(actor), ChatMessage.message.ilike(f"%{query}%")))
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt))

    def typing_recipients(self, conversation_id: int, actor: Actor) -> set[int]:
        conversation = self.get_conversation(conversation_id, actor)
        return participants(conversation) - {actor.user_id}

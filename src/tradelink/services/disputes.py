"""Order disputes: lifecycle, mediation, escalation and messaging."""

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    Dispute,
    DisputeMessage,
    DisputePriority,
    DisputeStatus,
    DisputeType,
    NotificationType,
    Order,
    UserRole,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.infrastructure.metrics import disputes_total
from tradelink.services.accounts import AccountService
from tradelink.services.actor import Actor
from tradelink.services.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tradelink.services.notifications import NotificationHub, NotificationService
from tradelink.utils.helpers import utcnow

logger = get_logger(__name__)

DISPUTE_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    DisputeStatus.OPEN: {
        DisputeStatus.UNDER_REVIEW,
        DisputeStatus.MEDIATION,
        DisputeStatus.RESOLVED,
        DisputeStatus.CLOSED,
    },
    DisputeStatus.UNDER_REVIEW: {DisputeStatus.MEDIATION, DisputeStatus.RESOLVED, DisputeStatus.CLOSED},
    DisputeStatus.MEDIATION: {DisputeStatus.UNDER_REVIEW, DisputeStatus.RESOLVED, DisputeStatus.CLOSED},
    DisputeStatus.RESOLVED: {DisputeStatus.UNDER_REVIEW, DisputeStatus.CLOSED},
    DisputeStatus.CLOSED: set(),
}

ACTIVE_STATUSES = (DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value, DisputeStatus.MEDIATION.value)

SORTABLE_FIELDS = {
    "created_at": Dispute.created_at,
    "type": Dispute.type,
    "status": Dispute.status,
    "priority": Dispute.priority,
    "resolved_at": Dispute.resolved_at,
}


def is_party(dispute: Dispute, actor: Actor) -> bool:
    return actor.user_id in (dispute.buyer_id, dispute.supplier_id)


class DisputeService:
    def __init__(self, session: Session, hub: NotificationHub | None = None):
        self.session = session
        self.notifications = NotificationService(session, hub)

    def _load(self, dispute_id: int) -> Dispute:
        dispute = self.session.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    def get_dispute(self, dispute_id: int, actor: Actor) -> Dispute:
        dispute = self._load(dispute_id)
        if not actor.is_admin and not is_party(dispute, actor):
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    def transition(self, dispute: Dispute, target: DisputeStatus) -> Dispute:
        """Apply a status change allowed by the transition table."""
        current = DisputeStatus(dispute.status)
        target = DisputeStatus(target)
        if target not in DISPUTE_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value, entity="dispute status")

        now = utcnow()
        dispute.status = target.value
        dispute.updated_at = now
        if target == DisputeStatus.RESOLVED:
            dispute.resolved_at = now
        elif target == DisputeStatus.CLOSED:
            dispute.closed_at = now
        self.session.flush()
        return dispute

    def notify_parties(
        self,
        dispute: Dispute,
        title: str,
        message: str,
        exclude: int | None = None,
        type: NotificationType = NotificationType.INFO,
    ) -> None:
        recipients = {dispute.buyer_id, dispute.supplier_id}
        if dispute.assigned_mediator:
            recipients.add(dispute.assigned_mediator)
        recipients.discard(exclude)
        for user_id in sorted(recipients):
            self.notifications.create_notification(
                user_id, title, message, type=type, related_id=dispute.id, related_type="dispute"
            )

    def create_dispute(
        self,
        actor: Actor,
        order_id: int,
        title: str,
        description: str,
        type: DisputeType | str,
        priority: DisputePriority | str = DisputePriority.MEDIUM,
        amount: float | None = None,
    ) -> Dispute:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if actor.user_id not in (order.buyer_id, order.supplier_id):
            raise PermissionDeniedError("Only the order's buyer or supplier can open a dispute")

        active = self.session.scalar(
            select(Dispute.id).where(Dispute.order_id == order.id, Dispute.status.in_(ACTIVE_STATUSES))
        )
        if active is not None:
            raise ConflictError("An active dispute already exists for this order")

        if amount is not None:
            if amount < 0:
                raise ValidationError("Dispute amount cannot be negative")
            if amount > order.total_amount:
                raise ValidationError("Dispute amount cannot exceed the order total")

        dispute = Dispute(
            order_id=order.id,
            buyer_id=order.buyer_id,
            supplier_id=order.supplier_id,
            raised_by=actor.user_id,
            title=title,
            description=description,
            type=DisputeType(type).value,
            priority=DisputePriority(priority or DisputePriority.MEDIUM).value,
            status=DisputeStatus.OPEN.value,
            amount=amount,
            escalation_level=0,
        )
        self.session.add(dispute)
        self.session.flush()

        counterparty = order.supplier_id if actor.user_id == order.buyer_id else order.buyer_id
        self.notifications.create_notification(
            counterparty,
            "Dispute Opened",
            f"A dispute was opened on order {order.order_number}: {title}",
            type=NotificationType.WARNING,
            related_id=dispute.id,
            related_type="dispute",
        )
        disputes_total.labels(event="created").inc()
        logger.info("dispute_created", dispute_id=dispute.id, order_id=order.id, type=dispute.type)
        return dispute

    def list_disputes(
        self,
        actor: Actor,
        status: DisputeStatus | None = None,
        type: DisputeType | None = None,
        priority: DisputePriority | None = None,
        buyer_id: int | None = None,
        supplier_id: int | None = None,
        mediator_id: int | None = None,
        search: str | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        limit: int = 20,
        offset: int = 0,
    ) -> dict:
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by '{sort_by}'")

        conditions = []
        if not actor.is_admin:
            conditions.append(or_(Dispute.buyer_id == actor.user_id, Dispute.supplier_id == actor.user_id))
        if status is not None:
            conditions.append(Dispute.status == DisputeStatus(status).value)
        if type is not None:
            conditions.append(Dispute.type == DisputeType(type).value)
        if priority is not None:
            conditions.append(Dispute.priority == DisputePriority(priority).value)
        if buyer_id is not None:
            conditions.append(Dispute.buyer_id == buyer_id)
        if supplier_id is not None:
            conditions.append(Dispute.supplier_id == supplier_id)
        if mediator_id is not None:
            conditions.append(Dispute.assigned_mediator == mediator_id)
        if search:
            pattern = f"%{search}%"
            conditions.append(or_(Dispute.title.ilike(pattern), Dispute.description.ilike(pattern)))

        total = self.session.scalar(select(func.count(Dispute.id)).where(*conditions))
        column = SORTABLE_FIELDS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()
        items = list(
            self.session.scalars(
                select(Dispute).where(*conditions).order_by(ordering, Dispute.id.desc()).limit(limit).offset(offset)
            )
        )
        return {"items": items, "total": total, "limit": limit, "offset": offset}

    def update_status(self, dispute_id: int, target: DisputeStatus, actor: Actor) -> Dispute:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can change dispute status")
        dispute = self.transition(self._load(dispute_id), target)
        self.notify_parties(dispute, "Dispute Updated", f"Dispute '{dispute.title}' is now {dispute.status}.")
        logger.info("dispute_status_changed", dispute_id=dispute.id, status=dispute.status)
        return dispute

    def assign_mediator(self, dispute_id: int, mediator_id: int, actor: Actor) -> Dispute:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can assign mediators")
        dispute = self._load(dispute_id)
        if dispute.status == DisputeStatus.CLOSED.value:
            raise ConflictError("Cannot assign a mediator to a closed dispute")
        AccountService(self.session).get_user_with_role(mediator_id, UserRole.ADMIN)

        dispute.assigned_mediator = mediator_id
        if dispute.status == DisputeStatus.OPEN.value:
            self.transition(dispute, DisputeStatus.UNDER_REVIEW)
        dispute.updated_at = utcnow()
        self.session.flush()

        self.notifications.create_notification(
            mediator_id,
            "Dispute Assigned",
            f"You have been assigned to mediate dispute '{dispute.title}'.",
            related_id=dispute.id,
            related_type="dispute",
        )
        logger.info("mediator_assigned", dispute_id=dispute.id, mediator_id=mediator_id)
        return dispute

    def escalate(self, dispute_id: int, reason: str, actor: Actor) -> Dispute:
        dispute = self.get_dispute(dispute_id, actor)
        if dispute.status not in ACTIVE_STATUSES:
            raise ConflictError(f"Cannot escalate a {dispute.status} dispute")
        if not reason or not reason.strip():
            raise ValidationError("An escalation reason is required")

        if dispute.status != DisputeStatus.MEDIATION.value:
            self.transition(dispute, DisputeStatus.MEDIATION)
        dispute.escalation_level = (dispute.escalation_level or 0) + 1
        dispute.escalated_at = utcnow()
        dispute.escalation_reason = reason
        self.session.flush()

        self.notify_parties(
            dispute,
            "Dispute Escalated",
            f"Dispute '{dispute.title}' was escalated to level {dispute.escalation_level}: {reason}",
            exclude=actor.user_id,
            type=NotificationType.WARNING,
        )
        disputes_total.labels(event="escalated").inc()
        logger.info("dispute_escalated", dispute_id=dispute.id, level=dispute.escalation_level)
        return dispute

    def add_message(
        self,
        dispute_id: int,
        actor: Actor,
        message: str,
        attachments: list[str] | None = None,
        is_internal: bool = False,
    ) -> DisputeMessage:
        dispute = self.get_dispute(dispute_id, actor)
        if dispute.status == DisputeStatus.CLOSED.value:
            raise ConflictError("Cannot post to a closed dispute")
        if is_internal and not actor.is_admin:
            raise PermissionDeniedError("Only admins can post internal messages")
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty")

        entry = DisputeMessage(
            dispute_id=dispute.id,
            sender_id=actor.user_id,
            sender_type=actor.role.value,
            message=message,
            attachments=attachments or [],
            is_internal=is_internal,
        )
        self.session.add(entry)
        dispute.updated_at = utcnow()
        self.session.flush()

        if not is_internal:
            self.notify_parties(
                dispute, "New Dispute Message", f"New message on dispute '{dispute.title}'.", exclude=actor.user_id
            )
        return entry

    def list_messages(self, dispute_id: int, actor: Actor) -> list[DisputeMessage]:
        dispute = self.get_dispute(dispute_id, actor)
        stmt = select(DisputeMessage).where(DisputeMessage.dispute_id == dispute.id)
        if not actor.is_admin:
            stmt = stmt.where(DisputeMessage.is_internal.is_(False))
        return list(self.session.scalars(stmt.order_by(DisputeMessage.created_at, DisputeMessage.id)))

    def statistics(self) -> dict:
        def counts(column, members):
            result = {member.value: 0 for member in members}
            for key, count in self.session.execute(select(column, func.count(Dispute.id)).group_by(column)):
                result[key] = count
            return result

        by_status = counts(Dispute.status, DisputeStatus)
        return {
            "total": sum(by_status.values()),
            "active": sum(by_status[s] for s in ACTIVE_STATUSES),
            "by_status": by_status,
            "by_type": counts(Dispute.type, DisputeType),
            "by_priority": counts(Dispute.priority, DisputePriority),
        }

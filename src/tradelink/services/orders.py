"""Orders created from accepted quotations."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    RFQ,
    NotificationType,
    Order,
    OrderStatus,
    PaymentStatus,
    Quotation,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.services.actor import Actor
from tradelink.services.commission import CommissionService
from tradelink.services.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from tradelink.services.notifications import NotificationHub, NotificationService
from tradelink.utils.helpers import generate_reference, round_money, utcnow

logger = get_logger(__name__)

ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}


class OrderService:
    def __init__(self, session: Session, hub: NotificationHub | None = None):
        self.session = session
        self.notifications = NotificationService(session, hub)

    def create_order_from_quotation(self, quotation: Quotation, rfq: RFQ) -> Order:
        order = Order(
            order_number=generate_reference("ORD"),
            buyer_id=rfq.buyer_id,
            supplier_id=quotation.supplier_id,
            quotation_id=quotation.id,
            category_id=rfq.category_id,
            total_amount=round_money(quotation.total_price),
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            refunded_amount=0.0,
        )
        self.session.add(order)
        self.session.flush()
        quotation.order_id = order.id
        logger.info("order_created", order_id=order.id, quotation_id=quotation.id)
        return order

    def _load(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def get_order(self, order_id: int, actor: Actor) -> Order:
        order = self._load(order_id)
        if not actor.is_admin and actor.user_id not in (order.buyer_id, order.supplier_id):
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def list_orders(
        self, actor: Actor, status: OrderStatus | None = None, limit: int = 50, offset: int = 0
    ) -> list[Order]:
        stmt = select(Order)
        if actor.is_buyer:
            stmt = stmt.where(Order.buyer_id == actor.user_id)
        elif actor.is_supplier:
            stmt = stmt.where(Order.supplier_id == actor.user_id)
        if status is not None:
            stmt = stmt.where(Order.status == OrderStatus(status).value)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def update_status(self, order_id: int, target: OrderStatus, actor: Actor) -> Order:
        order = self.get_order(order_id, actor)
        target = OrderStatus(target)
        current = OrderStatus(order.status)

        if target == OrderStatus.CANCELLED:
            if not (actor.is_admin or actor.user_id == order.buyer_id):
                raise PermissionDeniedError("Only the buyer or an admin can cancel an order")
        elif not (actor.is_admin or actor.user_id == order.supplier_id):
            raise PermissionDeniedError("Only the supplier or an admin can update order status")

        if target not in ORDER_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value, entity="order status")

        order.status = target.value
        order.updated_at = utcnow()
        self.session.flush()

        recipient = order.supplier_id if actor.user_id == order.buyer_id else order.buyer_id
        self.notifications.create_notification(
            recipient,
            "Order Updated",
            f"Order {order.order_number} is now {target.value}.",
            related_id=order.id,
            related_type="order",
        )
        logger.info("order_status_changed", order_id=order.id, status=target.value)
        return order

    def mark_paid(self, order_id: int, actor: Actor) -> Order:
        """Record buyer payment and apply the platform commission."""
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can mark orders paid")
        order = self._load(order_id)
        if order.status == OrderStatus.CANCELLED.value:
            raise ConflictError("Cannot mark a cancelled order as paid")
        if order.payment_status != PaymentStatus.PENDING.value:
            raise ConflictError(f"Order payment is already {order.payment_status}")

        order.payment_status = PaymentStatus.PAID.value
        order.updated_at = utcnow()
        CommissionService(self.session).apply_commission_to_order(order)

        self.notifications.create_notification(
            order.supplier_id,
            "Order Paid",
            f"Payment received for order {order.order_number}. "
            f"Commission: ₹{order.commission_amount:.2f}.",
            type=NotificationType.SUCCESS,
            related_id=order.id,
            related_type="order",
        )
        logger.info("order_paid", order_id=order.id)
        return order

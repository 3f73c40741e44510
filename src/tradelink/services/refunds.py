"""Buyer refunds against paid orders."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    Commission,
    CommissionStatus,
    NotificationType,
    Order,
    PaymentStatus,
    Refund,
    RefundStatus,
    RefundType,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.services.errors import ConflictError, NotFoundError, PaymentGatewayError, ValidationError
from tradelink.services.gateway import PaymentGateway, SimulatedPaymentGateway
from tradelink.services.notifications import NotificationHub, NotificationService
from tradelink.utils.helpers import round_money, utcnow

logger = get_logger(__name__)

REFUNDABLE_PAYMENT_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.PARTIALLY_REFUNDED.value)


class RefundService:
    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway | None = None,
        hub: NotificationHub | None = None,
    ):
        self.session = session
        self.gateway = gateway or SimulatedPaymentGateway()
        self.notifications = NotificationService(session, hub)

    @staticmethod
    def remaining_refundable(order: Order) -> float:
        return round_money(order.total_amount - (order.refunded_amount or 0))

    @classmethod
    def commission_adjustment(cls, order: Order, refund_amount: float) -> float:
        """Share of the order's remaining commission returned with a refund."""
        remaining = cls.remaining_refundable(order)
        if not order.commission_amount or remaining <= 0:
            return 0.0
        return round_money(min(refund_amount / remaining, 1) * order.commission_amount)

    def process_refund(
        self,
        order_id: int,
        amount: float,
        reason: str,
        admin_id: int,
        dispute_id: int | None = None,
    ) -> Refund:
        order = self.session.get(Order, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.payment_status not in REFUNDABLE_PAYMENT_STATUSES:
            raise ConflictError(f"Order payment is {order.payment_status}; nothing to refund")

        amount = round_money(amount or 0)
        remaining = self.remaining_refundable(order)
        if amount <= 0:
            raise ValidationError("Refund amount must be greater than zero")
        if amount > remaining:
            raise ValidationError(f"Refund amount exceeds refundable balance of {remaining:.2f}")

        refund = Refund(
            order_id=order.id,
            dispute_id=dispute_id,
            buyer_id=order.buyer_id,
            supplier_id=order.supplier_id,
            admin_id=admin_id,
            refund_amount=amount,
            original_amount=order.total_amount,
            refund_type=(RefundType.FULL if amount == remaining else RefundType.PARTIAL).value,
            reason=reason,
            status=RefundStatus.PENDING.value,
            commission_adjustment=self.commission_adjustment(order, amount),
        )
        self.session.add(refund)
        self.session.flush()
        logger.info("refund_created", refund_id=refund.id, order_id=order.id, amount=amount)
        return self._execute(refund, order)

    def _execute(self, refund: Refund, order: Order) -> Refund:
        refund.status = RefundStatus.PROCESSING.value
        self.session.flush()

        try:
            result = self.gateway.refund(order.order_number, refund.refund_amount)
        except PaymentGatewayError as e:
            success, transaction_id, error = False, None, e.message
        else:
            success, transaction_id, error = result.success, result.transaction_id, result.error

        refund.processed_at = utcnow()
        if not success:
            refund.status = RefundStatus.FAILED.value
            refund.failure_reason = error or "Unknown gateway error"
            self.session.flush()
            logger.warning("refund_failed", refund_id=refund.id, reason=refund.failure_reason)
            return refund

        refund.status = RefundStatus.COMPLETED.value
        refund.transaction_id = transaction_id
        refund.failure_reason = None
        self._apply_to_order(order, refund)
        self.session.flush()

        self.notifications.create_notification(
            refund.buyer_id,
            "Refund Processed",
            f"A refund of ₹{refund.refund_amount:.2f} for order {order.order_number} has been processed.",
            type=NotificationType.SUCCESS,
            related_id=refund.id,
            related_type="refund",
        )
        self.notifications.create_notification(
            refund.supplier_id,
            "Refund Issued",
            f"₹{refund.refund_amount:.2f} was refunded to the buyer for order {order.order_number}.",
            type=NotificationType.WARNING,
            related_id=refund.id,
            related_type="refund",
        )
        logger.info("refund_completed", refund_id=refund.id, transaction_id=transaction_id)
        return refund

    def _apply_to_order(self, order: Order, refund: Refund) -> None:
        order.refunded_amount = round_money((order.refunded_amount or 0) + refund.refund_amount)
        order.payment_status = (
            PaymentStatus.REFUNDED.value
            if order.refunded_amount >= order.total_amount
            else PaymentStatus.PARTIALLY_REFUNDED.value
        )

        adjustment = refund.commission_adjustment or 0.0
        if order.commission_amount is not None:
            order.commission_amount = round_money(max(order.commission_amount - adjustment, 0))
        if order.supplier_amount is not None:
            supplier_share = max(refund.refund_amount - adjustment, 0)
            order.supplier_amount = round_money(max(order.supplier_amount - supplier_share, 0))

        commission = self.session.scalar(select(Commission).where(Commission.order_id == order.id))
        if commission is not None and commission.status in (
            CommissionStatus.UNPAID.value,
            CommissionStatus.OVERDUE.value,
        ):
            commission.commission_amount = round_money(max(commission.commission_amount - adjustment, 0))
        order.updated_at = utcnow()

    def retry_refund(self, refund_id: int) -> Refund:
        refund = self.get_refund(refund_id)
        if refund.status != RefundStatus.FAILED.value:
            raise ConflictError("Only failed refunds can be retried")
        order = self.session.get(Order, refund.order_id)
        if refund.refund_amount > self.remaining_refundable(order):
            raise ValidationError("Refund amount exceeds refundable balance")
        logger.info("refund_retry", refund_id=refund.id)
        return self._execute(refund, order)

    def get_refund(self, refund_id: int) -> Refund:
        refund = self.session.get(Refund, refund_id)
        if refund is None:
            raise NotFoundError(f"Refund {refund_id} not found")
        return refund

    def list_refunds(
        self,
        order_id: int | None = None,
        dispute_id: int | None = None,
        buyer_id: int | None = None,
        supplier_id: int | None = None,
        status: RefundStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Refund]:
        stmt = select(Refund)
        if order_id is not None:
            stmt = stmt.where(Refund.order_id == order_id)
        if dispute_id is not None:
            stmt = stmt.where(Refund.dispute_id == dispute_id)
        if buyer_id is not None:
            stmt = stmt.where(Refund.buyer_id == buyer_id)
        if supplier_id is not None:
            stmt = stmt.where(Refund.supplier_id == supplier_id)
        if status is not None:
            stmt = stmt.where(Refund.status == RefundStatus(status).value)
        stmt = stmt.order_by(Refund.created_at.desc(), Refund.id.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

"""Supplier payouts for paid orders."""

from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    NotificationType,
    Order,
    PaymentStatus,
    Payout,
    PayoutMethod,
    PayoutStatus,
    SupplierProfile,
)
from tradelink.infrastructure.logging_config import bound_context, get_logger
from tradelink.infrastructure.metrics import payouts_total
from tradelink.models.config import get_platform_policy
from tradelink.services.accounts import payout_destination
from tradelink.services.errors import ConflictError, NotFoundError, PaymentGatewayError, ValidationError
from tradelink.services.gateway import PaymentGateway, SimulatedPaymentGateway
from tradelink.services.notifications import NotificationHub, NotificationService
from tradelink.utils.helpers import round_money, utcnow

logger = get_logger(__name__)

OPEN_PAYOUT_STATUSES = (
    PayoutStatus.PENDING.value,
    PayoutStatus.PROCESSING.value,
    PayoutStatus.COMPLETED.value,
)
PAYABLE_ORDER_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.PARTIALLY_REFUNDED.value)


def next_payout_date(now: datetime, weekday: int, hour: int) -> datetime:
    """Next ``weekday`` at ``hour``:00 strictly after ``now``."""
    days_ahead = (weekday - now.weekday()) % 7
    candidate = (now + timedelta(days=days_ahead)).replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=7)
    return candidate


class PayoutService:
    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway | None = None,
        hub: NotificationHub | None = None,
    ):
        self.session = session
        self.gateway = gateway or SimulatedPaymentGateway()
        self.policy = get_platform_policy()
        self.notifications = NotificationService(session, hub)

    def _payable_orders(self, supplier_id: int) -> list[Order]:
        covered = select(Payout.order_id).where(
            Payout.order_id.is_not(None), Payout.status.in_(OPEN_PAYOUT_STATUSES)
        )
        stmt = (
            select(Order)
            .where(
                Order.supplier_id == supplier_id,
                Order.payment_status.in_(PAYABLE_ORDER_STATUSES),
                Order.supplier_amount.is_not(None),
                Order.id.not_in(covered),
            )
            .order_by(Order.id)
        )
        return list(self.session.scalars(stmt))

    @staticmethod
    def _order_net(order: Order) -> tuple[float, float, float]:
        """(gross, commission, net) still owed to the supplier for an order."""
        gross = round_money(order.total_amount - (order.refunded_amount or 0))
        commission = round_money(min(order.commission_amount or 0, gross))
        return gross, commission, round_money(gross - commission)

    def calculate_pending_payout(self, supplier_id: int) -> dict | None:
        """Unpaid-out earnings for a supplier, or None below the minimum payout."""
        orders = [o for o in self._payable_orders(supplier_id) if self._order_net(o)[2] > 0]
        if not orders:
            return None

        amount = commission = net = 0.0
        for order in orders:
            gross, fee, owed = self._order_net(order)
            amount += gross
            commission += fee
            net += owed

        if round_money(net) < self.policy.minimum_payout:
            return None
        return {
            "supplier_id": supplier_id,
            "amount": round_money(amount),
            "commission_amount": round_money(commission),
            "net_amount": round_money(net),
            "order_ids": [o.id for o in orders],
            "scheduled_date": next_payout_date(utcnow(), self.policy.payout_weekday, self.policy.payout_hour),
        }

    def schedule_payout(self, supplier_id: int, method: PayoutMethod | str) -> list[Payout]:
        """Create one pending payout per payable order."""
        method = PayoutMethod(method)
        if self.session.get(SupplierProfile, supplier_id) is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")

        pending = self.calculate_pending_payout(supplier_id)
        if pending is None:
            raise ValidationError(
                f"Pending earnings are below the minimum payout of {self.policy.minimum_payout:.2f}",
                code="BELOW_MINIMUM_PAYOUT",
            )

        payouts = []
        for order in self.session.scalars(select(Order).where(Order.id.in_(pending["order_ids"]))):
            gross, commission, net = self._order_net(order)
            payout = Payout(
                supplier_id=supplier_id,
                order_id=order.id,
                amount=gross,
                commission_amount=commission,
                net_amount=net,
                method=method.value,
                status=PayoutStatus.PENDING.value,
                scheduled_date=pending["scheduled_date"],
            )
            self.session.add(payout)
            payouts.append(payout)
        self.session.flush()

        logger.info(
            "payouts_scheduled",
            supplier_id=supplier_id,
            count=len(payouts),
            net_amount=pending["net_amount"],
        )
        return payouts

    def _load(self, payout_id: int) -> Payout:
        payout = self.session.get(Payout, payout_id)
        if payout is None:
            raise NotFoundError(f"Payout {payout_id} not found")
        return payout

    def process_payout(self, payout_id: int, checkpoint: bool = False) -> Payout:
        """Send a pending payout through the gateway.

        With ``checkpoint`` the PROCESSING state is committed before the
        gateway is called, so a crash afterwards cannot return the payout
        to the pending queue.
        """
        payout = self._load(payout_id)
        if payout.status != PayoutStatus.PENDING.value:
            raise ConflictError(f"Payout is {payout.status}, not pending")

        profile = self.session.get(SupplierProfile, payout.supplier_id)
        if profile is None:
            raise NotFoundError(f"Supplier {payout.supplier_id} not found")
        destination = payout_destination(profile, payout.method)

        payout.status = PayoutStatus.PROCESSING.value
        self.session.flush()
        if checkpoint:
            self.session.commit()
        logger.info(
            "payout_transfer_requested",
            payout_id=payout.id,
            method=payout.method,
            amount=payout.net_amount,
            destination=destination,
        )

        try:
            result = self.gateway.transfer(f"PAYOUT-{payout.id}", payout.net_amount, payout.method, destination)
        except PaymentGatewayError as e:
            result = None
            error = e.message
        else:
            error = result.error

        now = utcnow()
        payout.processed_date = now
        if result is not None and result.success:
            payout.status = PayoutStatus.COMPLETED.value
            payout.transaction_id = result.transaction_id
            payout.failure_reason = None
            self.notifications.create_notification(
                payout.supplier_id,
                "Payout Completed",
                f"A payout of ₹{payout.net_amount:.2f} has been sent.",
                type=NotificationType.SUCCESS,
                related_id=payout.id,
                related_type="payout",
            )
            logger.info("payout_completed", payout_id=payout.id, transaction_id=result.transaction_id)
        else:
            payout.status = PayoutStatus.FAILED.value
            payout.failure_reason = error or "Unknown gateway error"
            self.notifications.create_notification(
                payout.supplier_id,
                "Payout Failed",
                f"Your payout of ₹{payout.net_amount:.2f} failed: {payout.failure_reason}",
                type=NotificationType.ERROR,
                related_id=payout.id,
                related_type="payout",
            )
            logger.warning("payout_failed", payout_id=payout.id, reason=payout.failure_reason)

        payouts_total.labels(status=payout.status).inc()
        self.session.flush()
        return payout

    def process_all_pending(self, now: datetime | None = None) -> dict[str, int]:
        """Process every pending payout due by ``now``.

        Each payout is committed on its own; a failure on one never undoes
        transfers already recorded for the others.
        """
        now = now or utcnow()
        due_ids = list(
            self.session.scalars(
                select(Payout.id)
                .where(Payout.status == PayoutStatus.PENDING.value, Payout.scheduled_date <= now)
                .order_by(Payout.id)
            )
        )
        summary = {"processed": 0, "completed": 0, "failed": 0}
        for payout_id in due_ids:
            with bound_context(payout_id=payout_id):
                try:
                    payout = self.process_payout(payout_id, checkpoint=True)
                except ValidationError as e:
                    payout = self._load(payout_id)
                    payout.status = PayoutStatus.FAILED.value
                    payout.failure_reason = e.message
                    payout.processed_date = utcnow()
                    payouts_total.labels(status=payout.status).inc()
                except Exception:
                    logger.exception("payout_processing_error")
                    self.session.rollback()
                    payout = self._load(payout_id)
                self.session.commit()
            summary["processed"] += 1
            summary[payout.status] = summary.get(payout.status, 0) + 1
        logger.info("pending_payouts_processed", **summary)
        return summary

    def retry_failed_payout(self, payout_id: int) -> Payout:
        payout = self._load(payout_id)
        if payout.status != PayoutStatus.FAILED.value:
            raise ConflictError("Only failed payouts can be retried")
        payout.status = PayoutStatus.PENDING.value
        payout.failure_reason = None
        self.session.flush()
        logger.info("payout_retry", payout_id=payout.id)
        return self.process_payout(payout.id)

    def list_payouts(
        self,
        supplier_id: int | None = None,
        status: PayoutStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Payout]:
        stmt = select(Payout)
        if supplier_id is not None:
            stmt = stmt.where(Payout.supplier_id == supplier_id)
        if status is not None:
            stmt = stmt.where(Payout.status == PayoutStatus(status).value)
        stmt = stmt.order_by(Payout.created_at.desc(), Payout.id.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def payout_summary(self, start: datetime | None = None, end: datetime | None = None) -> dict:
        stmt = select(Payout)
        if start is not None:
            stmt = stmt.where(Payout.created_at >= start)
        if end is not None:
            stmt = stmt.where(Payout.created_at <= end)
        payouts = list(self.session.scalars(stmt))

        summary: dict = {}
        for status in PayoutStatus:
            matching = [p for p in payouts if p.status == status.value]
            summary[f"total_{status.value}"] = len(matching)
            summary[f"{status.value}_amount"] = round_money(sum(p.net_amount for p in matching))
        return summary

    def supplier_earnings(self, supplier_id: int) -> dict:
        orders = list(
            self.session.scalars(
                select(Order).where(
                    Order.supplier_id == supplier_id,
                    Order.payment_status.in_(PAYABLE_ORDER_STATUSES + (PaymentStatus.REFUNDED.value,)),
                    Order.supplier_amount.is_not(None),
                )
            )
        )
        payouts = self.list_payouts(supplier_id=supplier_id, limit=10_000)

        total_earned = round_money(sum(self._order_net(o)[2] for o in orders))
        paid_out = round_money(
            sum(p.net_amount for p in payouts if p.status == PayoutStatus.COMPLETED.value)
        )
        in_flight = round_money(
            sum(
                p.net_amount
                for p in payouts
                if p.status in (PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value)
            )
        )
        return {
            "supplier_id": supplier_id,
            "total_earned": total_earned,
            "paid_out": paid_out,
            "pending_payouts": in_flight,
            "unscheduled": round_money(max(total_earned - paid_out - in_flight, 0)),
        }

"""Daily commission job: overdue tracking, payment reminders and expiry sweeps."""

import asyncio
from collections import defaultdict
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from tradelink.data.database import Database
from tradelink.data.schema import Commission, CommissionStatus, NotificationType, SupplierProfile
from tradelink.infrastructure.logging_config import bound_context, get_logger
from tradelink.models.config import get_platform_policy
from tradelink.services.errors import NotFoundError, ValidationError
from tradelink.services.notifications import NotificationHub, NotificationService
from tradelink.services.rfq import RFQService
from tradelink.utils.helpers import days_between, round_money, utcnow

logger = get_logger(__name__)

REMINDER_TEMPLATES = {
    "day0": (
        "Commission Payment Overdue",
        "You have {count} overdue commission(s) totaling ₹{total:.2f}. "
        "Please submit payment to avoid account restrictions.",
        NotificationType.WARNING,
    ),
    "day7": (
        "Payment Reminder: 7 Days Overdue",
        "Your commission payment of ₹{total:.2f} is {days} days overdue. "
        "Please submit payment immediately to restore full account access.",
        NotificationType.WARNING,
    ),
    "day14": (
        "Final Warning: 14 Days Overdue",
        "URGENT: Your commission payment of ₹{total:.2f} is {days} days overdue. "
        "Account restrictions may be applied. Please submit payment immediately.",
        NotificationType.ERROR,
    ),
}


class CommissionJobService:
    """Synchronous pieces of the daily job, run inside one session."""

    def __init__(self, session: Session, hub: NotificationHub | None = None):
        self.session = session
        self.hub = hub
        self.policy = get_platform_policy()
        self.notifications = NotificationService(session, hub)

    def mark_overdue_commissions(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        commissions = list(
            self.session.scalars(
                select(Commission).where(
                    Commission.status == CommissionStatus.UNPAID.value, Commission.due_date < now
                )
            )
        )
        for commission in commissions:
            commission.status = CommissionStatus.OVERDUE.value
        self.session.flush()
        logger.info("commissions_marked_overdue", count=len(commissions))
        return len(commissions)

    def reminder_type(self, days_overdue: int, last_sent: datetime | None, now: datetime) -> str | None:
        """Pick day0/day7/day14 or None when no reminder is due."""
        spaced = last_sent is None or days_between(last_sent, now) >= self.policy.min_days_between_reminders

        if days_overdue == 0 and last_sent is None:
            return "day0"
        if self.policy.first_reminder_days <= days_overdue < self.policy.final_warning_days:
            return "day7" if spaced else None
        if days_overdue >= self.policy.final_warning_days:
            return "day14" if spaced else None
        return None

    def send_automated_reminders(self, now: datetime | None = None) -> dict[str, int]:
        now = now or utcnow()
        commissions = self.session.scalars(
            select(Commission).where(
                Commission.status.in_(
                    [CommissionStatus.OVERDUE.value, CommissionStatus.PAYMENT_SUBMITTED.value]
                )
            )
        )
        by_supplier: dict[int, list[Commission]] = defaultdict(list)
        for commission in commissions:
            by_supplier[commission.supplier_id].append(commission)

        sent = {"day0": 0, "day7": 0, "day14": 0}
        for supplier_id, items in by_supplier.items():
            profile = self.session.get(SupplierProfile, supplier_id)
            if profile is None:
                continue

            oldest_due = min(c.due_date for c in items)
            days_overdue = days_between(oldest_due, now)
            kind = self.reminder_type(days_overdue, profile.payment_reminder_sent_at, now)
            if kind is None:
                continue

            title, template, severity = REMINDER_TEMPLATES[kind]
            total = round_money(sum(c.commission_amount for c in items))
            self.notifications.create_notification(
                supplier_id,
                title,
                template.format(count=len(items), total=total, days=days_overdue),
                type=severity,
                related_type="commission",
            )
            profile.payment_reminder_sent_at = now
            sent[kind] += 1
            logger.info("commission_reminder_sent", supplier_id=supplier_id, reminder=kind, days=days_overdue)

        self.session.flush()
        return sent

    def send_manual_reminder(self, supplier_id: int, admin_id: int) -> None:
        """Admin-triggered reminder; ignores reminder spacing."""
        profile = self.session.get(SupplierProfile, supplier_id)
        if profile is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")

        outstanding = list(
            self.session.scalars(
                select(Commission).where(
                    Commission.supplier_id == supplier_id,
                    Commission.status.in_([CommissionStatus.UNPAID.value, CommissionStatus.OVERDUE.value]),
                )
            )
        )
        if not outstanding:
            raise ValidationError("Supplier has no outstanding commissions")

        total = round_money(sum(c.commission_amount for c in outstanding))
        self.notifications.create_notification(
            supplier_id,
            "Payment Reminder from Admin",
            f"You have {len(outstanding)} unpaid commission(s) totaling ₹{total:.2f}. "
            "Please submit payment at your earliest convenience.",
            type=NotificationType.WARNING,
            related_type="commission",
        )
        profile.payment_reminder_sent_at = utcnow()
        self.session.flush()
        logger.info("manual_reminder_sent", supplier_id=supplier_id, admin_id=admin_id)

    def run_daily_job(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        logger.info("daily_job_started", timestamp=now.isoformat())

        rfqs = RFQService(self.session, self.hub)
        summary = {
            "commissions_marked_overdue": self.mark_overdue_commissions(now),
            "reminders_sent": self.send_automated_reminders(now),
            "rfqs_expired": rfqs.expire_rfqs(now),
            "quotations_expired": rfqs.expire_quotations(now),
        }
        logger.info("daily_job_completed", **summary)
        return summary


class CommissionScheduler:
    """Run the daily job periodically on the event loop."""

    def __init__(self, database: Database, hub: NotificationHub | None = None, interval_hours: float = 24.0):
        self.database = database
        self.hub = hub
        self.interval_seconds = interval_hours * 3600
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> dict:
        with bound_context(job="daily_commission"), self.database.session_scope() as session:
            return CommissionJobService(session, self.hub).run_daily_job()

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("daily_job_failed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("commission_scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("commission_scheduler_stopped")

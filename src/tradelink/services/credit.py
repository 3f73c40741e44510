"""Supplier commission credit and payment submissions."""

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    Commission,
    CommissionStatus,
    NotificationType,
    PaymentSubmission,
    SubmissionStatus,
    SupplierProfile,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.services.commission import CommissionService
from tradelink.services.errors import (
    ConflictError,
    NotFoundError,
    SupplierRestrictedError,
    ValidationError,
)
from tradelink.services.notifications import NotificationHub, NotificationService
from tradelink.utils.helpers import round_money, utcnow

logger = get_logger(__name__)

PAYMENT_TOLERANCE = 0.01


class CreditStatus(BaseModel):
    supplier_id: int
    credit_limit: float
    total_outstanding: float
    available_credit: float
    is_restricted: bool
    manually_restricted: bool
    credit_exceeded: bool
    restriction_reason: str | None = None


class CreditService:
    """Track outstanding commission against each supplier's credit limit."""

    def __init__(self, session: Session, hub: NotificationHub | None = None):
        self.session = session
        self.commissions = CommissionService(session)
        self.notifications = NotificationService(session, hub)

    def _profile(self, supplier_id: int) -> SupplierProfile:
        profile = self.session.get(SupplierProfile, supplier_id)
        if profile is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")
        return profile

    def get_credit_status(self, supplier_id: int) -> CreditStatus:
        profile = self._profile(supplier_id)
        outstanding = self.commissions.outstanding_total(supplier_id)
        limit = float(profile.commission_credit_limit or 0)
        exceeded = outstanding > limit
        manual = bool(profile.is_restricted)

        reason = profile.restriction_reason if manual else None
        if exceeded and not reason:
            reason = f"Outstanding commission {outstanding:.2f} exceeds credit limit {limit:.2f}"

        return CreditStatus(
            supplier_id=supplier_id,
            credit_limit=limit,
            total_outstanding=outstanding,
            available_credit=round_money(max(limit - outstanding, 0)),
            is_restricted=manual or exceeded,
            manually_restricted=manual,
            credit_exceeded=exceeded,
            restriction_reason=reason,
        )

    def is_restricted(self, supplier_id: int) -> bool:
        if self.session.get(SupplierProfile, supplier_id) is None:
            return False
        return self.get_credit_status(supplier_id).is_restricted

    def ensure_not_restricted(self, supplier_id: int) -> None:
        """Raise SupplierRestrictedError for restricted suppliers."""
        if self.session.get(SupplierProfile, supplier_id) is None:
            return
        status = self.get_credit_status(supplier_id)
        if status.is_restricted:
            raise SupplierRestrictedError(
                status.restriction_reason or "Account restricted due to unpaid commission"
            )

    def list_supplier_credit(self) -> list[CreditStatus]:
        supplier_ids = list(
            self.session.scalars(select(SupplierProfile.user_id).order_by(SupplierProfile.user_id))
        )
        return [self.get_credit_status(supplier_id) for supplier_id in supplier_ids]

    def set_credit_limit(self, supplier_id: int, limit: float) -> CreditStatus:
        if limit is None or limit < 0:
            raise ValidationError("Credit limit must be zero or greater")
        profile = self._profile(supplier_id)
        profile.commission_credit_limit = float(limit)
        self.session.flush()
        logger.info("credit_limit_set", supplier_id=supplier_id, limit=limit)
        return self.get_credit_status(supplier_id)

    def set_restriction(self, supplier_id: int, is_restricted: bool, reason: str | None = None) -> CreditStatus:
        profile = self._profile(supplier_id)
        profile.is_restricted = is_restricted
        profile.restriction_reason = reason if is_restricted else None
        self.session.flush()

        if is_restricted:
            self.notifications.create_notification(
                supplier_id,
                "Account Restricted",
                reason or "Your account has been restricted. Please contact support.",
                type=NotificationType.ERROR,
                related_type="credit",
            )
        logger.info("supplier_restriction_set", supplier_id=supplier_id, restricted=is_restricted)
        return self.get_credit_status(supplier_id)

    # ------------------------------------------------------------------
    # Payment submissions
    # ------------------------------------------------------------------

    def submit_payment(
        self,
        supplier_id: int,
        amount: float,
        commission_ids: list[int],
        payment_method: str = "bank_transfer",
    ) -> PaymentSubmission:
        """Record a supplier payment covering a set of outstanding commissions."""
        if not commission_ids:
            raise ValidationError("At least one commission must be selected")
        if len(set(commission_ids)) != len(commission_ids):
            raise ValidationError("Duplicate commission ids in submission")

        commissions = list(
            self.session.scalars(select(Commission).where(Commission.id.in_(commission_ids)))
        )
        if len(commissions) != len(commission_ids):
            raise NotFoundError("One or more commissions not found")

        payable = {CommissionStatus.UNPAID.value, CommissionStatus.OVERDUE.value}
        for commission in commissions:
            if commission.supplier_id != supplier_id:
                raise ValidationError(f"Commission {commission.id} does not belong to supplier")
            if commission.status not in payable:
                raise ConflictError(
                    f"Commission {commission.id} is {commission.status} and cannot be paid"
                )

        expected = round_money(sum(c.commission_amount for c in commissions))
        if round_money(abs(amount - expected)) > PAYMENT_TOLERANCE:
            raise ValidationError(
                f"Payment amount {amount:.2f} does not match total commission {expected:.2f}",
                code="AMOUNT_MISMATCH",
            )

        for commission in commissions:
            commission.status = CommissionStatus.PAYMENT_SUBMITTED.value

        submission = PaymentSubmission(
            supplier_id=supplier_id,
            amount=round_money(amount),
            commission_ids=sorted(commission_ids),
            payment_method=payment_method,
            status=SubmissionStatus.PENDING.value,
            submitted_at=utcnow(),
        )
        self.session.add(submission)
        self.session.flush()
        logger.info("payment_submitted", submission_id=submission.id, supplier_id=supplier_id, amount=amount)
        return submission

    def _pending_submission(self, submission_id: int) -> PaymentSubmission:
        submission = self.session.get(PaymentSubmission, submission_id)
        if submission is None:
            raise NotFoundError(f"Payment submission {submission_id} not found")
        if submission.status != SubmissionStatus.PENDING.value:
            raise ConflictError(f"Payment submission is already {submission.status}")
        return submission

    def _submission_commissions(self, submission: PaymentSubmission) -> list[Commission]:
        return list(
            self.session.scalars(select(Commission).where(Commission.id.in_(submission.commission_ids)))
        )

    def approve_payment(self, submission_id: int, admin_id: int) -> PaymentSubmission:
        submission = self._pending_submission(submission_id)
        now = utcnow()

        for commission in self._submission_commissions(submission):
            commission.status = CommissionStatus.PAID.value
            commission.payment_date = now

        submission.status = SubmissionStatus.APPROVED.value
        submission.verified_at = now
        submission.verified_by = admin_id

        profile = self.session.get(SupplierProfile, submission.supplier_id)
        if profile is not None:
            profile.last_payment_date = now
        self.session.flush()

        self.notifications.create_notification(
            submission.supplier_id,
            "Payment Approved",
            f"Your commission payment of ₹{submission.amount:.2f} has been verified.",
            type=NotificationType.SUCCESS,
            related_id=submission.id,
            related_type="payment_submission",
        )
        logger.info("payment_approved", submission_id=submission.id, admin_id=admin_id)
        return submission

    def reject_payment(self, submission_id: int, admin_id: int, reason: str) -> PaymentSubmission:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        submission = self._pending_submission(submission_id)
        now = utcnow()

        for commission in self._submission_commissions(submission):
            commission.status = (
                CommissionStatus.OVERDUE.value if commission.due_date < now else CommissionStatus.UNPAID.value
            )

        submission.status = SubmissionStatus.REJECTED.value
        submission.verified_at = now
        submission.verified_by = admin_id
        submission.rejection_reason = reason
        self.session.flush()

        self.notifications.create_notification(
            submission.supplier_id,
            "Payment Rejected",
            f"Your commission payment of ₹{submission.amount:.2f} was rejected: {reason}",
            type=NotificationType.ERROR,
            related_id=submission.id,
            related_type="payment_submission",
        )
        logger.info("payment_rejected", submission_id=submission.id, admin_id=admin_id)
        return submission

    def list_submissions(
        self, status: SubmissionStatus | None = None, supplier_id: int | None = None
    ) -> list[PaymentSubmission]:
        stmt = select(PaymentSubmission)
        if status is not None:
            stmt = stmt.where(PaymentSubmission.status == SubmissionStatus(status).value)
        if supplier_id is not None:
            stmt = stmt.where(PaymentSubmission.supplier_id == supplier_id)
        return list(self.session.scalars(stmt.order_by(PaymentSubmission.submitted_at.desc())))

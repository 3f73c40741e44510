"""RFQ and quotation lifecycle for buyers and suppliers."""

from datetime import datetime, timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    RFQ,
    NotificationType,
    Quotation,
    QuotationStatus,
    RFQStatus,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.infrastructure.metrics import quotations_total, rfqs_created_total
from tradelink.models.config import get_settings
from tradelink.services.actor import Actor
from tradelink.services.credit import CreditService
from tradelink.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tradelink.services.notifications import NotificationHub, NotificationService
from tradelink.services.orders import OrderService
from tradelink.utils.helpers import round_money, utcnow

logger = get_logger(__name__)

RFQ_EDITABLE_FIELDS = ("title", "description", "quantity", "target_price", "delivery_location", "category_id")
QUOTATION_EDITABLE_FIELDS = ("price_per_unit", "total_price", "moq", "lead_time_days", "validity_days", "terms")


class RFQService:
    """Buyer-side and supplier-side RFQ operations."""

    def __init__(self, session: Session, hub: NotificationHub | None = None):
        self.session = session
        self.hub = hub
        self.settings = get_settings()
        self.notifications = NotificationService(session, hub)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _load_rfq(self, rfq_id: int) -> RFQ:
        rfq = self.session.get(RFQ, rfq_id)
        if rfq is None:
            raise NotFoundError(f"RFQ {rfq_id} not found")
        return rfq

    def _owned_rfq(self, rfq_id: int, actor: Actor) -> RFQ:
        rfq = self._load_rfq(rfq_id)
        if rfq.buyer_id != actor.user_id:
            raise PermissionDeniedError("Only the RFQ owner can do this")
        return rfq

    def _load_quotation(self, quotation_id: int) -> Quotation:
        quotation = self.session.get(Quotation, quotation_id)
        if quotation is None:
            raise NotFoundError(f"Quotation {quotation_id} not found")
        return quotation

    def _owned_quotation(self, quotation_id: int, actor: Actor) -> Quotation:
        quotation = self._load_quotation(quotation_id)
        if quotation.supplier_id != actor.user_id:
            raise PermissionDeniedError("Only the quoting supplier can do this")
        return quotation

    def _quotation_count(self, rfq_id: int) -> int:
        return self.session.scalar(select(func.count(Quotation.id)).where(Quotation.rfq_id == rfq_id))

    @staticmethod
    def _require_open(rfq: RFQ) -> None:
        if rfq.status != RFQStatus.OPEN.value:
            raise ConflictError(f"RFQ is {rfq.status}")

    # ------------------------------------------------------------------
    # Buyer operations
    # ------------------------------------------------------------------

    def create_rfq(
        self,
        actor: Actor,
        title: str,
        quantity: int,
        description: str = "",
        category_id: int | None = None,
        target_price: float | None = None,
        delivery_location: str | None = None,
        expires_at: datetime | None = None,
    ) -> RFQ:
        if not actor.is_buyer:
            raise PermissionDeniedError("Only buyers can create RFQs")
        if quantity is None or quantity <= 0:
            raise ValidationError("Quantity must be greater than zero")

        now = utcnow()
        expires_at = expires_at or now + timedelta(days=self.settings.rfq_default_expiry_days)
        if expires_at <= now:
            raise ValidationError("Expiration date must be in the future")

        rfq = RFQ(
            buyer_id=actor.user_id,
            category_id=category_id,
            title=title,
            description=description,
            quantity=quantity,
            target_price=target_price,
            delivery_location=delivery_location,
            status=RFQStatus.OPEN.value,
            expires_at=expires_at,
        )
        self.session.add(rfq)
        self.session.flush()
        rfqs_created_total.inc()
        logger.info("rfq_created", rfq_id=rfq.id, buyer_id=actor.user_id)
        return rfq

    def get_rfq(self, rfq_id: int, actor: Actor) -> dict:
        """RFQ as the caller may see it; suppliers also get their quote state."""
        rfq = self._load_rfq(rfq_id)
        if actor.is_buyer and rfq.buyer_id != actor.user_id:
            raise NotFoundError(f"RFQ {rfq_id} not found")

        view = {column.name: getattr(rfq, column.name) for column in RFQ.__table__.columns}
        view["quotation_count"] = self._quotation_count(rfq.id)
        if actor.is_supplier:
            view["has_quoted"] = (
                self.session.scalar(
                    select(Quotation.id).where(
                        Quotation.rfq_id == rfq.id, Quotation.supplier_id == actor.user_id
                    )
                )
                is not None
            )
        return view

    def list_buyer_rfqs(
        self,
        buyer_id: int,
        status: RFQStatus | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RFQ]:
        stmt = select(RFQ).where(RFQ.buyer_id == buyer_id)
        if status is not None:
            stmt = stmt.where(RFQ.status == RFQStatus(status).value)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(RFQ.title.ilike(pattern), RFQ.description.ilike(pattern)))
        stmt = stmt.order_by(RFQ.created_at.desc(), RFQ.id.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def update_rfq(self, rfq_id: int, actor: Actor, **changes) -> RFQ:
        rfq = self._owned_rfq(rfq_id, actor)
        self._require_open(rfq)

        if changes.get("quantity") is not None and changes["quantity"] <= 0:
            raise ValidationError("Quantity must be greater than zero")
        for field in RFQ_EDITABLE_FIELDS:
            if changes.get(field) is not None:
                setattr(rfq, field, changes[field])
        rfq.updated_at = utcnow()
        self.session.flush()
        logger.info("rfq_updated", rfq_id=rfq.id)
        return rfq

    def close_rfq(self, rfq_id: int, actor: Actor) -> RFQ:
        rfq = self._owned_rfq(rfq_id, actor)
        self._require_open(rfq)
        rfq.status = RFQStatus.CLOSED.value
        rfq.updated_at = utcnow()
        self.session.flush()
        logger.info("rfq_closed", rfq_id=rfq.id)
        return rfq

    def delete_rfq(self, rfq_id: int, actor: Actor) -> None:
        rfq = self._owned_rfq(rfq_id, actor)
        if self._quotation_count(rfq.id):
            raise ConflictError("Cannot delete an RFQ that has quotations; close it instead")
        self.session.delete(rfq)
        self.session.flush()
        logger.info("rfq_deleted", rfq_id=rfq_id)

    def extend_expiration(self, rfq_id: int, actor: Actor, new_expires_at: datetime) -> RFQ:
        rfq = self._owned_rfq(rfq_id, actor)
        if rfq.status == RFQStatus.CLOSED.value:
            raise ConflictError("Cannot extend a closed RFQ")
        if new_expires_at <= utcnow():
            raise ValidationError("New expiration date must be in the future")
        if new_expires_at <= rfq.expires_at:
            raise ValidationError("New expiration date must be later than the current one")

        rfq.expires_at = new_expires_at
        if rfq.status == RFQStatus.EXPIRED.value:
            rfq.status = RFQStatus.OPEN.value
        rfq.updated_at = utcnow()
        self.session.flush()
        logger.info("rfq_extended", rfq_id=rfq.id, expires_at=new_expires_at.isoformat())
        return rfq

    def list_rfq_quotations(self, rfq_id: int, actor: Actor) -> list[Quotation]:
        rfq = self._load_rfq(rfq_id)
        if not actor.is_admin and rfq.buyer_id != actor.user_id:
            raise PermissionDeniedError("Only the RFQ owner can view its quotations")
        stmt = select(Quotation).where(Quotation.rfq_id == rfq.id).order_by(Quotation.total_price)
        return list(self.session.scalars(stmt))

    def accept_quotation(self, quotation_id: int, actor: Actor) -> Quotation:
        """Accept one quotation, close the RFQ and turn the deal into an order."""
        quotation = self._load_quotation(quotation_id)
        rfq = self._owned_rfq(quotation.rfq_id, actor)
        if quotation.status != QuotationStatus.SENT.value:
            raise ConflictError(f"Quotation is {quotation.status}")
        self._require_open(rfq)

        now = utcnow()
        quotation.status = QuotationStatus.ACCEPTED.value
        quotation.updated_at = now
        rfq.status = RFQStatus.CLOSED.value
        rfq.updated_at = now

        others = list(
            self.session.scalars(
                select(Quotation).where(
                    Quotation.rfq_id == rfq.id,
                    Quotation.id != quotation.id,
                    Quotation.status == QuotationStatus.SENT.value,
                )
            )
        )
        for other in others:
            other.status = QuotationStatus.REJECTED.value
            other.rejection_reason = "Another quotation was accepted"
            other.updated_at = now
            quotations_total.labels(status="rejected").inc()
            self.notifications.create_notification(
                other.supplier_id,
                "Quotation Not Selected",
                f"Another quotation was accepted for RFQ '{rfq.title}'.",
                related_id=other.id,
                related_type="quotation",
            )

        order = OrderService(self.session, self.hub).create_order_from_quotation(quotation, rfq)

        self.notifications.create_notification(
            quotation.supplier_id,
            "Quotation Accepted",
            f"Your quotation for '{rfq.title}' was accepted. Order {order.order_number} has been created.",
            type=NotificationType.SUCCESS,
            related_id=order.id,
            related_type="order",
        )
        quotations_total.labels(status="accepted").inc()
        logger.info("quotation_accepted", quotation_id=quotation.id, rfq_id=rfq.id, order_id=order.id)
        return quotation

    def reject_quotation(self, quotation_id: int, actor: Actor, reason: str | None = None) -> Quotation:
        quotation = self._load_quotation(quotation_id)
        rfq = self._owned_rfq(quotation.rfq_id, actor)
        if quotation.status != QuotationStatus.SENT.value:
            raise ConflictError(f"Quotation is {quotation.status}")

        quotation.status = QuotationStatus.REJECTED.value
        quotation.rejection_reason = reason
        quotation.updated_at = utcnow()
        self.session.flush()

        self.notifications.create_notification(
            quotation.supplier_id,
            "Quotation Rejected",
            f"Your quotation for '{rfq.title}' was rejected." + (f" Reason: {reason}" if reason else ""),
            type=NotificationType.WARNING,
            related_id=quotation.id,
            related_type="quotation",
        )
        quotations_total.labels(status="rejected").inc()
        logger.info("quotation_rejected", quotation_id=quotation.id)
        return quotation

    def buyer_analytics(self, buyer_id: int) -> dict:
        rows = self.session.execute(
            select(RFQ.status, func.count(RFQ.id)).where(RFQ.buyer_id == buyer_id).group_by(RFQ.status)
        )
        by_status = {status.value: 0 for status in RFQStatus}
        by_status.update({status: count for status, count in rows})
        total_rfqs = sum(by_status.values())

        quotations = list(
            self.session.scalars(select(Quotation).join(RFQ).where(RFQ.buyer_id == buyer_id))
        )
        accepted_value = sum(
            q.total_price for q in quotations if q.status == QuotationStatus.ACCEPTED.value
        )
        return {
            "total_rfqs": total_rfqs,
            "rfqs_by_status": by_status,
            "total_quotations_received": len(quotations),
            "average_quotations_per_rfq": round(len(quotations) / total_rfqs, 2) if total_rfqs else 0.0,
            "accepted_quotation_value": round_money(accepted_value),
        }

    # ------------------------------------------------------------------
    # Supplier operations
    # ------------------------------------------------------------------

    def list_available_rfqs(
        self,
        category_id: int | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[RFQ]:
        stmt = select(RFQ).where(RFQ.status == RFQStatus.OPEN.value, RFQ.expires_at > utcnow())
        if category_id is not None:
            stmt = stmt.where(RFQ.category_id == category_id)
        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(RFQ.title.ilike(pattern), RFQ.description.ilike(pattern)))
        stmt = stmt.order_by(RFQ.created_at.desc(), RFQ.id.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def create_quotation(
        self,
        rfq_id: int,
        actor: Actor,
        price_per_unit: float,
        total_price: float | None = None,
        moq: int | None = None,
        lead_time_days: int | None = None,
        validity_days: int | None = None,
        terms: str | None = None,
    ) -> Quotation:
        if not actor.is_supplier:
            raise PermissionDeniedError("Only suppliers can submit quotations")
        if price_per_unit is None or price_per_unit <= 0:
            raise ValidationError("Price per unit must be greater than zero")

        rfq = self._load_rfq(rfq_id)
        if rfq.status != RFQStatus.OPEN.value or rfq.expires_at <= utcnow():
            raise ConflictError("RFQ is no longer accepting quotations")

        CreditService(self.session, self.hub).ensure_not_restricted(actor.user_id)

        existing = self.session.scalar(
            select(Quotation.id).where(Quotation.rfq_id == rfq.id, Quotation.supplier_id == actor.user_id)
        )
        if existing is not None:
            raise ConflictError("You have already submitted a quotation for this RFQ")

        quotation = Quotation(
            rfq_id=rfq.id,
            supplier_id=actor.user_id,
            price_per_unit=price_per_unit,
            total_price=round_money(total_price if total_price is not None else price_per_unit * rfq.quantity),
            moq=moq,
            lead_time_days=lead_time_days,
            validity_days=validity_days,
            terms=terms,
            status=QuotationStatus.SENT.value,
        )
        self.session.add(quotation)
        self.session.flush()

        self.notifications.create_notification(
            rfq.buyer_id,
            "New Quotation Received",
            f"You received a new quotation for '{rfq.title}'.",
            related_id=quotation.id,
            related_type="quotation",
        )
        quotations_total.labels(status="sent").inc()
        logger.info("quotation_created", quotation_id=quotation.id, rfq_id=rfq.id, supplier_id=actor.user_id)
        return quotation

    def get_quotation(self, quotation_id: int, actor: Actor) -> Quotation:
        quotation = self._load_quotation(quotation_id)
        if actor.is_admin or quotation.supplier_id == actor.user_id:
            return quotation
        if actor.is_buyer and quotation.rfq.buyer_id == actor.user_id:
            return quotation
        raise NotFoundError(f"Quotation {quotation_id} not found")

    def update_quotation(self, quotation_id: int, actor: Actor, **changes) -> Quotation:
        quotation = self._owned_quotation(quotation_id, actor)
        if quotation.status != QuotationStatus.SENT.value:
            raise ConflictError("Only sent quotations can be updated")

        for field in QUOTATION_EDITABLE_FIELDS:
            if changes.get(field) is not None:
                setattr(quotation, field, changes[field])
        if changes.get("price_per_unit") is not None and changes.get("total_price") is None:
            quotation.total_price = round_money(quotation.price_per_unit * quotation.rfq.quantity)
        quotation.updated_at = utcnow()
        self.session.flush()
        logger.info("quotation_updated", quotation_id=quotation.id)
        return quotation

    def withdraw_quotation(self, quotation_id: int, actor: Actor) -> None:
        quotation = self._owned_quotation(quotation_id, actor)
        if quotation.status != QuotationStatus.SENT.value:
            raise ConflictError("Only sent quotations can be withdrawn")
        self.session.delete(quotation)
        self.session.flush()
        quotations_total.labels(status="withdrawn").inc()
        logger.info("quotation_withdrawn", quotation_id=quotation_id)

    def list_supplier_quotations(
        self, supplier_id: int, status: QuotationStatus | None = None, limit: int = 50, offset: int = 0
    ) -> list[Quotation]:
        stmt = select(Quotation).where(Quotation.supplier_id == supplier_id)
        if status is not None:
            stmt = stmt.where(Quotation.status == QuotationStatus(status).value)
        stmt = stmt.order_by(Quotation.created_at.desc(), Quotation.id.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def supplier_analytics(self, supplier_id: int) -> dict:
        quotations = list(self.session.scalars(select(Quotation).where(Quotation.supplier_id == supplier_id)))
        by_status = {status.value: 0 for status in QuotationStatus}
        for quotation in quotations:
            by_status[quotation.status] = by_status.get(quotation.status, 0) + 1

        accepted = [q for q in quotations if q.status == QuotationStatus.ACCEPTED.value]
        open_rfqs = self.session.scalar(
            select(func.count(RFQ.id)).where(RFQ.status == RFQStatus.OPEN.value, RFQ.expires_at > utcnow())
        )
        return {
            "total_quotations": len(quotations),
            "quotations_by_status": by_status,
            "acceptance_rate": round(len(accepted) / len(quotations) * 100, 2) if quotations else 0.0,
            "total_value_accepted": round_money(sum(q.total_price for q in accepted)),
            "open_rfqs": open_rfqs,
        }

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def expire_rfqs(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        rfqs = list(
            self.session.scalars(select(RFQ).where(RFQ.status == RFQStatus.OPEN.value, RFQ.expires_at < now))
        )
        for rfq in rfqs:
            rfq.status = RFQStatus.EXPIRED.value
            rfq.updated_at = now
        self.session.flush()
        if rfqs:
            logger.info("rfqs_expired", count=len(rfqs))
        return len(rfqs)

    def expire_quotations(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        candidates = list(
            self.session.scalars(
                select(Quotation).where(
                    Quotation.status == QuotationStatus.SENT.value, Quotation.validity_days.is_not(None)
                )
            )
        )
        expired = 0
        for quotation in candidates:
            if quotation.created_at + timedelta(days=quotation.validity_days) < now:
                quotation.status = QuotationStatus.EXPIRED.value
                quotation.updated_at = now
                expired += 1
        self.session.flush()
        if expired:
            logger.info("quotations_expired", count=expired)
        return expired

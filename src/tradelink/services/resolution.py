"""Dispute resolution: recommendations, decisions, reopening and reporting."""

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    Dispute,
    DisputeMessage,
    DisputePriority,
    DisputeStatus,
    DisputeType,
    NotificationType,
    Order,
    RefundStatus,
    ResolutionType,
    UserRole,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.infrastructure.metrics import disputes_total
from tradelink.services.actor import Actor
from tradelink.services.disputes import ACTIVE_STATUSES, DisputeService
from tradelink.services.errors import (
    ConflictError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    ValidationError,
)
from tradelink.services.evidence import EvidenceService
from tradelink.services.gateway import PaymentGateway
from tradelink.services.notifications import NotificationHub
from tradelink.services.refunds import RefundService
from tradelink.utils.helpers import round_money

logger = get_logger(__name__)

REFUND_RESOLUTIONS = (ResolutionType.REFUND, ResolutionType.PARTIAL_REFUND)


class ResolutionDecision(BaseModel):
    resolution_type: ResolutionType
    summary: str = Field(..., min_length=1)
    refund_amount: float | None = Field(default=None, gt=0)
    refund_percentage: float | None = Field(default=None, gt=0, le=100)
    action_required: str | None = None
    timeline: str | None = None
    conditions: list[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    buyer_satisfaction: int
    supplier_impact: int
    platform_risk: int


class ResolutionRecommendation(BaseModel):
    recommended_action: str
    reasoning: str
    confidence: int
    alternative_options: list[str]
    risk_assessment: RiskAssessment


def _clamp(value: int) -> int:
    return max(0, min(100, value))


def recommend(
    dispute_type: str,
    evidence_complete: bool,
    order_amount: float,
    priority: str,
    escalation_level: int,
) -> ResolutionRecommendation:
    """Rule-based resolution recommendation for a dispute."""
    confidence = 50
    buyer_satisfaction, supplier_impact, platform_risk = 50, 50, 30

    if dispute_type == DisputeType.PRODUCT_QUALITY.value:
        if evidence_complete:
            action = "partial_refund"
            reasoning = (
                "Quality issues with evidence provided. Partial refund maintains supplier "
                "relationship while compensating buyer."
            )
            confidence, buyer_satisfaction, supplier_impact = 80, 75, 40
        else:
            action = "request_more_evidence"
            reasoning = "Insufficient evidence to make informed decision. Request additional documentation."
            confidence = 90
        alternatives = ["full_refund", "replacement", "store_credit"]

    elif dispute_type == DisputeType.SHIPPING_DELAY.value:
        if order_amount > 1000:
            action = "partial_refund"
            reasoning = "Significant order value with shipping delay. Partial compensation recommended."
            confidence, buyer_satisfaction, supplier_impact = 70, 70, 30
        else:
            action = "store_credit"
            reasoning = (
                "Minor shipping delay. Store credit maintains customer relationship with "
                "minimal supplier impact."
            )
            confidence, buyer_satisfaction, supplier_impact = 75, 60, 20
        alternatives = ["shipping_refund", "expedited_shipping", "discount_coupon"]

    elif dispute_type == DisputeType.WRONG_ITEM.value:
        action = "replacement"
        reasoning = "Clear supplier error. Replacement is standard resolution for wrong item delivery."
        confidence, buyer_satisfaction, supplier_impact = 95, 90, 60
        alternatives = ["full_refund", "partial_refund_plus_keep_item"]

    elif dispute_type == DisputeType.PAYMENT_ISSUE.value:
        action = "investigate_payment"
        reasoning = "Payment disputes require careful investigation of transaction records."
        confidence, platform_risk = 60, 70
        alternatives = ["refund_if_double_charged", "payment_plan", "dispute_with_processor"]

    elif dispute_type == DisputeType.COMMUNICATION.value:
        action = "mediation"
        reasoning = "Communication issues best resolved through mediated discussion."
        confidence, buyer_satisfaction, supplier_impact, platform_risk = 85, 70, 30, 20
        alternatives = ["warning_to_supplier", "communication_training", "account_review"]

    else:
        action = "case_by_case_review"
        reasoning = "Unique dispute requires individual assessment by senior mediator."
        confidence = 40
        alternatives = ["escalate_to_senior", "request_more_info", "schedule_call"]

    confidence += 15 if evidence_complete else -10
    if priority == DisputePriority.URGENT.value:
        platform_risk += 20
    if escalation_level > 0:
        platform_risk += escalation_level * 10
        confidence -= escalation_level * 5

    return ResolutionRecommendation(
        recommended_action=action,
        reasoning=reasoning,
        confidence=_clamp(confidence),
        alternative_options=alternatives,
        risk_assessment=RiskAssessment(
            buyer_satisfaction=_clamp(buyer_satisfaction),
            supplier_impact=_clamp(supplier_impact),
            platform_risk=_clamp(platform_risk),
        ),
    )


def format_resolution_message(decision: ResolutionDecision, refund_amount: float | None) -> str:
    label = decision.resolution_type.value.replace("_", " ").upper()
    lines = ["Dispute Resolution:", "", f"Resolution Type: {label}", "", f"Summary: {decision.summary}", ""]
    if refund_amount:
        lines.append(f"Refund Amount: ₹{refund_amount:.2f}")
    if decision.refund_percentage:
        lines.append(f"Refund Percentage: {decision.refund_percentage:g}%")
    if decision.action_required:
        lines.append(f"Action Required: {decision.action_required}")
    if decision.timeline:
        lines.append(f"Timeline: {decision.timeline}")
    if decision.conditions:
        lines.append(f"Conditions: {', '.join(decision.conditions)}")
    lines.append("")
    lines.append(
        "This dispute has been resolved. If you have any questions about this resolution, "
        "please contact our support team."
    )
    return "\n".join(lines)


class ResolutionService:
    def __init__(
        self,
        session: Session,
        gateway: PaymentGateway | None = None,
        hub: NotificationHub | None = None,
        evidence_dir: str | None = None,
    ):
        self.session = session
        self.disputes = DisputeService(session, hub)
        self.refunds = RefundService(session, gateway, hub)
        self.evidence = EvidenceService(session, evidence_dir)

    def _load(self, dispute_id: int) -> Dispute:
        dispute = self.session.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    def analyze_dispute(self, dispute_id: int) -> ResolutionRecommendation:
        dispute = self._load(dispute_id)
        order = self.session.get(Order, dispute.order_id)
        completeness = self.evidence.validate_completeness(dispute.id)
        return recommend(
            dispute.type,
            completeness["is_complete"],
            order.total_amount if order else 0.0,
            dispute.priority,
            dispute.escalation_level or 0,
        )

    def resolve_dispute(self, dispute_id: int, decision: ResolutionDecision, actor: Actor) -> Dispute:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can resolve disputes")
        dispute = self._load(dispute_id)
        if dispute.status not in ACTIVE_STATUSES:
            raise ConflictError("Dispute not found or already resolved")

        refund_amount = None
        if decision.resolution_type in REFUND_RESOLUTIONS:
            if not decision.refund_amount and not decision.refund_percentage:
                raise ValidationError("Refund amount or percentage is required for refund resolutions")
            order = self.session.get(Order, dispute.order_id)
            refund_amount = decision.refund_amount or 0.0
            if decision.refund_percentage:
                refund_amount = order.total_amount * decision.refund_percentage / 100
            refund_amount = round_money(refund_amount)

            refund = self.refunds.process_refund(
                dispute.order_id, refund_amount, decision.summary, actor.user_id, dispute_id=dispute.id
            )
            if refund.status != RefundStatus.COMPLETED.value:
                raise PaymentGatewayError(f"Refund failed: {refund.failure_reason}", retryable=True)

        dispute.assigned_mediator = actor.user_id
        dispute.resolution_type = decision.resolution_type.value
        dispute.resolution_summary = decision.summary
        self.disputes.transition(dispute, DisputeStatus.RESOLVED)

        self.session.add(
            DisputeMessage(
                dispute_id=dispute.id,
                sender_id=actor.user_id,
                sender_type=UserRole.ADMIN.value,
                message=format_resolution_message(decision, refund_amount),
                attachments=[],
                is_internal=False,
            )
        )
        self.session.flush()

        self.disputes.notify_parties(
            dispute,
            "Dispute Resolved",
            f"Dispute '{dispute.title}' was resolved: {decision.resolution_type.value.replace('_', ' ')}.",
            exclude=actor.user_id,
            type=NotificationType.SUCCESS,
        )
        disputes_total.labels(event="resolved").inc()
        logger.info(
            "dispute_resolved",
            dispute_id=dispute.id,
            resolution_type=dispute.resolution_type,
            refund_amount=refund_amount,
        )
        return dispute

    def reopen_dispute(self, dispute_id: int, reason: str, actor: Actor) -> Dispute:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can reopen disputes")
        dispute = self._load(dispute_id)
        if dispute.status != DisputeStatus.RESOLVED.value:
            raise ConflictError("Only resolved disputes can be reopened")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reopen a dispute")

        self.disputes.transition(dispute, DisputeStatus.UNDER_REVIEW)
        self.session.add(
            DisputeMessage(
                dispute_id=dispute.id,
                sender_id=actor.user_id,
                sender_type=UserRole.ADMIN.value,
                message=f"Dispute reopened. Reason: {reason}",
                attachments=[],
                is_internal=False,
            )
        )
        self.session.flush()
        self.disputes.notify_parties(
            dispute, "Dispute Reopened", f"Dispute '{dispute.title}' was reopened: {reason}", exclude=actor.user_id
        )
        disputes_total.labels(event="reopened").inc()
        logger.info("dispute_reopened", dispute_id=dispute.id)
        return dispute

    def close_dispute(self, dispute_id: int, actor: Actor) -> Dispute:
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can close disputes")
        dispute = self.disputes.transition(self._load(dispute_id), DisputeStatus.CLOSED)
        self.disputes.notify_parties(dispute, "Dispute Closed", f"Dispute '{dispute.title}' was closed.")
        disputes_total.labels(event="closed").inc()
        logger.info("dispute_closed", dispute_id=dispute.id)
        return dispute

    def resolution_statistics(self) -> dict:
        resolved = list(
            self.session.scalars(select(Dispute).where(Dispute.status == DisputeStatus.RESOLVED.value))
        )
        total = self.session.scalar(select(func.count(Dispute.id)))

        types: dict[str, int] = {}
        total_days = 0.0
        for dispute in resolved:
            if dispute.resolution_type:
                types[dispute.resolution_type] = types.get(dispute.resolution_type, 0) + 1
            if dispute.created_at and dispute.resolved_at:
                total_days += (dispute.resolved_at - dispute.created_at).total_seconds() / 86400

        return {
            "total_resolved": len(resolved),
            "resolution_types": types,
            "average_resolution_days": round(total_days / len(resolved), 2) if resolved else 0.0,
            "resolution_rate": round(len(resolved) / total * 100, 2) if total else 0.0,
        }

    def mediator_performance(self, mediator_id: int | None = None) -> dict[str, dict]:
        stmt = select(Dispute).where(Dispute.status == DisputeStatus.RESOLVED.value)
        if mediator_id is not None:
            stmt = stmt.where(Dispute.assigned_mediator == mediator_id)

        stats: dict[str, dict] = {}
        for dispute in self.session.scalars(stmt):
            key = str(dispute.assigned_mediator) if dispute.assigned_mediator else "unassigned"
            entry = stats.setdefault(
                key, {"total_resolved": 0, "resolution_types": {}, "escalated_cases": 0, "_days": 0.0}
            )
            entry["total_resolved"] += 1
            if dispute.resolution_type:
                entry["resolution_types"][dispute.resolution_type] = (
                    entry["resolution_types"].get(dispute.resolution_type, 0) + 1
                )
            if (dispute.escalation_level or 0) > 0:
                entry["escalated_cases"] += 1
            if dispute.created_at and dispute.resolved_at:
                entry["_days"] += (dispute.resolved_at - dispute.created_at).total_seconds() / 86400

        for entry in stats.values():
            resolved = entry["total_resolved"]
            entry["average_resolution_days"] = round(entry.pop("_days") / resolved, 2)
            entry["escalation_rate"] = round(entry["escalated_cases"] / resolved * 100, 2)
        return stats

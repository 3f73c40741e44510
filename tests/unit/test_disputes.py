"""Tests for disputes, evidence, refunds and dispute resolution."""

import pytest
from sqlalchemy import select

from tradelink.data.schema import (
    Commission,
    DisputeStatus,
    DisputeType,
    Notification,
    PaymentStatus,
    RefundStatus,
    RefundType,
    ResolutionType,
)
from tradelink.services import (
    ConflictError,
    DisputeService,
    EvidenceService,
    InvalidTransitionError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    RefundService,
    ResolutionDecision,
    ResolutionService,
    SimulatedPaymentGateway,
    ValidationError,
)
from tradelink.services.resolution import recommend

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def disputes(session):
    return DisputeService(session)


@pytest.fixture
def order(place_order):
    return place_order(total=1000.0)


@pytest.fixture
def dispute(disputes, order, users):
    return disputes.create_dispute(
        users["buyer"],
        order.id,
        "Brackets arrived bent",
        "Half of the brackets are deformed.",
        DisputeType.PRODUCT_QUALITY,
        amount=500.0,
    )


@pytest.fixture
def evidence(session, tmp_path):
    return EvidenceService(session, evidence_dir=tmp_path)


@pytest.fixture
def resolutions(session, tmp_path):
    return ResolutionService(session, SimulatedPaymentGateway(), evidence_dir=str(tmp_path))


class TestDisputeLifecycle:
    """Tests for opening and moving disputes."""

    def test_create_notifies_counterparty(self, dispute, session, users):
        assert dispute.status == DisputeStatus.OPEN.value
        assert dispute.raised_by == users["buyer"].user_id
        assert dispute.supplier_id == users["supplier"].user_id
        assert dispute.escalation_level == 0

        titles = session.scalars(
            select(Notification.title).where(Notification.user_id == users["supplier"].user_id)
        ).all()
        assert "Dispute Opened" in titles

    def test_one_active_dispute_per_order(self, disputes, dispute, order, users):
        with pytest.raises(ConflictError):
            disputes.create_dispute(users["supplier"], order.id, "Late payment", "x", DisputeType.PAYMENT_ISSUE)

    def test_new_dispute_after_close(self, disputes, dispute, order, users):
        disputes.update_status(dispute.id, DisputeStatus.CLOSED, users["admin"])
        again = disputes.create_dispute(users["buyer"], order.id, "Still bent", "x", DisputeType.PRODUCT_QUALITY)
        assert again.id != dispute.id

    def test_only_parties_can_open(self, disputes, order, users):
        with pytest.raises(PermissionDeniedError):
            disputes.create_dispute(users["other_buyer"], order.id, "Nosy", "x", DisputeType.OTHER)

    def test_amount_limited_to_order_total(self, disputes, order, users):
        with pytest.raises(ValidationError):
            disputes.create_dispute(users["buyer"], order.id, "Too much", "x", DisputeType.OTHER, amount=1000.01)

    def test_outsiders_cannot_see(self, disputes, dispute, users):
        with pytest.raises(NotFoundError):
            disputes.get_dispute(dispute.id, users["other_buyer"])

    def test_status_changes_follow_table(self, disputes, dispute, users):
        disputes.update_status(dispute.id, DisputeStatus.UNDER_REVIEW, users["admin"])
        disputes.update_status(dispute.id, DisputeStatus.CLOSED, users["admin"])
        assert dispute.closed_at is not None

        with pytest.raises(InvalidTransitionError):
            disputes.update_status(dispute.id, DisputeStatus.OPEN, users["admin"])

    def test_status_changes_are_admin_only(self, disputes, dispute, users):
        with pytest.raises(PermissionDeniedError):
            disputes.update_status(dispute.id, DisputeStatus.CLOSED, users["buyer"])

    def test_assign_mediator_starts_review(self, disputes, dispute, users):
        disputes.assign_mediator(dispute.id, users["mediator"].user_id, users["admin"])
        assert dispute.assigned_mediator == users["mediator"].user_id
        assert dispute.status == DisputeStatus.UNDER_REVIEW.value

    def test_mediator_must_be_admin(self, disputes, dispute, users):
        with pytest.raises(ValidationError):
            disputes.assign_mediator(dispute.id, users["other_buyer"].user_id, users["admin"])

    def test_escalation_levels(self, disputes, dispute, users):
        disputes.escalate(dispute.id, "No response from supplier", users["buyer"])
        assert dispute.status == DisputeStatus.MEDIATION.value
        assert dispute.escalation_level == 1

        disputes.escalate(dispute.id, "Still nothing", users["buyer"])
        assert dispute.escalation_level == 2
        assert dispute.escalation_reason == "Still nothing"

    def test_escalation_needs_reason(self, disputes, dispute, users):
        with pytest.raises(ValidationError):
            disputes.escalate(dispute.id, " ", users["buyer"])


class TestDisputeMessages:
    def test_internal_notes_hidden_from_parties(self, disputes, dispute, users):
        disputes.add_message(dispute.id, users["buyer"], "Photos attached")
        disputes.add_message(dispute.id, users["admin"], "Supplier has history", is_internal=True)

        assert [m.message for m in disputes.list_messages(dispute.id, users["supplier"])] == ["Photos attached"]
        assert len(disputes.list_messages(dispute.id, users["admin"])) == 2

    def test_parties_cannot_post_internal(self, disputes, dispute, users):
        with pytest.raises(PermissionDeniedError):
            disputes.add_message(dispute.id, users["buyer"], "secret", is_internal=True)

    def test_closed_dispute_is_read_only(self, disputes, dispute, users):
        disputes.update_status(dispute.id, DisputeStatus.CLOSED, users["admin"])
        with pytest.raises(ConflictError):
            disputes.add_message(dispute.id, users["buyer"], "hello?")


class TestDisputeQueries:
    def test_list_is_scoped_and_searchable(self, disputes, dispute, place_order, users):
        other_order = place_order(buyer="other_buyer", supplier="gold_supplier")
        disputes.create_dispute(
            users["other_buyer"], other_order.id, "Parcel late", "Two weeks late", DisputeType.SHIPPING_DELAY
        )

        assert disputes.list_disputes(users["buyer"])["total"] == 1
        assert disputes.list_disputes(users["admin"])["total"] == 2

        found = disputes.list_disputes(users["admin"], search="late")
        assert [d.type for d in found["items"]] == [DisputeType.SHIPPING_DELAY.value]

        by_type = disputes.list_disputes(users["admin"], type=DisputeType.PRODUCT_QUALITY)
        assert [d.id for d in by_type["items"]] == [dispute.id]

    def test_rejects_unknown_sort_field(self, disputes, users):
        with pytest.raises(ValidationError):
            disputes.list_disputes(users["admin"], sort_by="password")

    def test_statistics(self, disputes, dispute, users):
        disputes.escalate(dispute.id, "Urgent", users["buyer"])
        stats = disputes.statistics()
        assert stats["total"] == 1
        assert stats["active"] == 1
        assert stats["by_status"]["mediation"] == 1
        assert stats["by_type"]["product_quality"] == 1
        assert stats["by_priority"]["medium"] == 1


class TestEvidence:
    """Tests for evidence upload and completeness."""

    def test_upload_stores_file(self, evidence, dispute, users, session, tmp_path):
        item = evidence.upload_evidence(dispute.id, users["buyer"], "photos/bent.PNG", PNG, "image/png")

        assert item.original_name == "bent.PNG"
        assert item.filename.endswith(".png")
        assert item.user_type == "buyer"

        target = tmp_path / str(dispute.id) / item.filename
        assert not target.exists()
        session.commit()
        assert target.read_bytes() == PNG
        assert list(target.parent.glob("*.part")) == []

    def test_rolled_back_upload_leaves_no_file(self, evidence, dispute, users, session, tmp_path):
        dispute_id = dispute.id
        session.commit()
        evidence.upload_evidence(dispute_id, users["buyer"], "bent.png", PNG, "image/png")
        session.rollback()

        assert list((tmp_path / str(dispute_id)).iterdir()) == []

    def test_size_and_type_limits(self, evidence):
        with pytest.raises(ValidationError) as too_large:
            evidence.validate_file(10 * 1024 * 1024 + 1, "image/png")
        assert too_large.value.code == "FILE_TOO_LARGE"

        with pytest.raises(ValidationError) as wrong_type:
            evidence.validate_file(100, "application/x-msdownload")
        assert wrong_type.value.code == "UNSUPPORTED_FILE_TYPE"

    def test_empty_upload_rejected(self, evidence, dispute, users):
        with pytest.raises(ValidationError):
            evidence.upload_evidence(dispute.id, users["buyer"], "empty.txt", b"", "text/plain")

    def test_outsider_cannot_upload(self, evidence, dispute, users):
        with pytest.raises(NotFoundError):
            evidence.upload_evidence(dispute.id, users["other_buyer"], "x.txt", b"x", "text/plain")

    def test_grouped_by_role(self, evidence, dispute, users):
        evidence.upload_evidence(dispute.id, users["buyer"], "bent.png", PNG, "image/png")
        evidence.upload_evidence(dispute.id, users["supplier"], "qc-report.pdf", b"%PDF-1.4", "application/pdf")

        grouped = evidence.list_evidence(dispute.id, users["admin"])
        assert [e.original_name for e in grouped["buyer"]] == ["bent.png"]
        assert [e.original_name for e in grouped["supplier"]] == ["qc-report.pdf"]
        assert grouped["admin"] == []

    def test_only_uploader_or_admin_removes(self, evidence, dispute, users, session, tmp_path):
        item = evidence.upload_evidence(dispute.id, users["buyer"], "bent.png", PNG, "image/png")
        session.commit()
        path = tmp_path / str(dispute.id) / item.filename

        with pytest.raises(PermissionDeniedError):
            evidence.remove_evidence(item.id, users["supplier"])

        evidence.remove_evidence(item.id, users["buyer"])
        assert path.exists()
        session.commit()
        assert not path.exists()

    def test_rolled_back_removal_keeps_file(self, evidence, dispute, users, session, tmp_path):
        item = evidence.upload_evidence(dispute.id, users["buyer"], "bent.png", PNG, "image/png")
        session.commit()
        path = tmp_path / str(dispute.id) / item.filename

        evidence.remove_evidence(item.id, users["buyer"])
        session.rollback()

        assert path.read_bytes() == PNG
        assert evidence.get_evidence(item.id, users["admin"]).filename == item.filename

    def test_quality_dispute_needs_images_from_both_sides(self, evidence, dispute, users):
        report = evidence.validate_completeness(dispute.id)
        assert report["is_complete"] is False
        assert report["missing_evidence"] == ["Buyer evidence", "Supplier evidence", "Product images"]

        evidence.upload_evidence(dispute.id, users["buyer"], "bent.png", PNG, "image/png")
        evidence.upload_evidence(dispute.id, users["supplier"], "qc-report.pdf", b"%PDF-1.4", "application/pdf")
        assert evidence.validate_completeness(dispute.id)["is_complete"] is True

    def test_shipping_dispute_needs_tracking(self, evidence, disputes, place_order, users):
        order = place_order()
        late = disputes.create_dispute(users["buyer"], order.id, "Late", "x", DisputeType.SHIPPING_DELAY)
        evidence.upload_evidence(late.id, users["buyer"], "email.txt", b"eta?", "text/plain")
        evidence.upload_evidence(late.id, users["supplier"], "invoice.pdf", b"%PDF", "application/pdf")

        assert evidence.validate_completeness(late.id)["missing_evidence"] == ["Shipping documentation"]

        evidence.upload_evidence(late.id, users["supplier"], "Tracking-123.pdf", b"%PDF", "application/pdf")
        assert evidence.validate_completeness(late.id)["is_complete"] is True

    def test_statistics(self, evidence, dispute, users):
        evidence.upload_evidence(dispute.id, users["buyer"], "a.png", PNG, "image/png")
        evidence.upload_evidence(dispute.id, users["buyer"], "b.txt", b"note", "text/plain")
        stats = evidence.statistics()
        assert stats["total_files"] == 2
        assert stats["total_size"] == len(PNG) + 4
        assert stats["file_type_distribution"] == {"image": 1, "text": 1}
        assert stats["average_files_per_dispute"] == 2.0


class TestRefunds:
    """Tests for refunds and commission adjustment."""

    def test_partial_then_full_refund(self, session, order):
        refunds = RefundService(session, SimulatedPaymentGateway())
        commission = session.scalar(select(Commission).where(Commission.order_id == order.id))

        first = refunds.process_refund(order.id, 400.0, "Damaged units", admin_id=1)
        assert first.status == RefundStatus.COMPLETED.value
        assert first.refund_type == RefundType.PARTIAL.value
        assert first.commission_adjustment == 20.0
        assert order.payment_status == PaymentStatus.PARTIALLY_REFUNDED.value
        assert order.refunded_amount == 400.0
        assert order.commission_amount == 30.0
        assert order.supplier_amount == 570.0
        assert commission.commission_amount == 30.0

        second = refunds.process_refund(order.id, 600.0, "Rest returned", admin_id=1)
        assert second.refund_type == RefundType.FULL.value
        assert second.commission_adjustment == 30.0
        assert order.payment_status == PaymentStatus.REFUNDED.value
        assert order.commission_amount == 0.0
        assert order.supplier_amount == 0.0

    def test_amount_bounds(self, session, order):
        refunds = RefundService(session)
        with pytest.raises(ValidationError):
            refunds.process_refund(order.id, 0, "nothing", admin_id=1)
        with pytest.raises(ValidationError):
            refunds.process_refund(order.id, 1000.01, "too much", admin_id=1)

    def test_unpaid_order_not_refundable(self, session, place_order):
        unpaid = place_order(paid=False)
        with pytest.raises(ConflictError):
            RefundService(session).process_refund(unpaid.id, 10.0, "x", admin_id=1)

    def test_failed_refund_leaves_order_untouched_and_retries(self, session, order):
        failing = RefundService(session, SimulatedPaymentGateway(failure="Card expired"))
        refund = failing.process_refund(order.id, 100.0, "x", admin_id=1)

        assert refund.status == RefundStatus.FAILED.value
        assert refund.failure_reason == "Card expired"
        assert order.payment_status == PaymentStatus.PAID.value
        assert order.refunded_amount == 0.0

        retried = RefundService(session, SimulatedPaymentGateway()).retry_refund(refund.id)
        assert retried.status == RefundStatus.COMPLETED.value
        assert order.refunded_amount == 100.0

    def test_only_failed_refunds_retry(self, session, order):
        refunds = RefundService(session)
        refund = refunds.process_refund(order.id, 100.0, "x", admin_id=1)
        with pytest.raises(ConflictError):
            refunds.retry_refund(refund.id)

    def test_list_refunds_by_order(self, session, order, place_order):
        refunds = RefundService(session)
        refunds.process_refund(order.id, 100.0, "x", admin_id=1)
        refunds.process_refund(place_order().id, 50.0, "y", admin_id=1)
        assert len(refunds.list_refunds(order_id=order.id)) == 1
        assert len(refunds.list_refunds()) == 2


class TestRecommendation:
    """Tests for the rule-based resolution recommendation."""

    def test_quality_with_evidence(self):
        rec = recommend("product_quality", True, 500.0, "medium", 0)
        assert rec.recommended_action == "partial_refund"
        assert rec.confidence == 95

    def test_quality_without_evidence(self):
        rec = recommend("product_quality", False, 500.0, "medium", 0)
        assert rec.recommended_action == "request_more_evidence"
        assert rec.confidence == 80

    @pytest.mark.parametrize("amount,action", [(1500.0, "partial_refund"), (200.0, "store_credit")])
    def test_shipping_delay_by_value(self, amount, action):
        assert recommend("shipping_delay", True, amount, "low", 0).recommended_action == action

    def test_wrong_item_confidence_clamped(self):
        assert recommend("wrong_item", True, 100.0, "low", 0).confidence == 100

    def test_escalation_and_urgency_raise_risk(self):
        calm = recommend("communication", False, 100.0, "low", 0)
        tense = recommend("communication", False, 100.0, "urgent", 2)
        assert tense.risk_assessment.platform_risk == calm.risk_assessment.platform_risk + 40
        assert tense.confidence == calm.confidence - 10

    def test_other_types_reviewed_case_by_case(self):
        assert recommend("other", False, 100.0, "low", 0).recommended_action == "case_by_case_review"


class TestResolution:
    """Tests for resolving, reopening and closing disputes."""

    def test_analyze_uses_evidence(self, resolutions, dispute):
        assert resolutions.analyze_dispute(dispute.id).recommended_action == "request_more_evidence"

    def test_resolve_with_percentage_refund(self, resolutions, dispute, order, users, session):
        decision = ResolutionDecision(
            resolution_type=ResolutionType.PARTIAL_REFUND,
            summary="Refund for the bent half",
            refund_percentage=20,
            conditions=["Return damaged units"],
        )
        resolved = resolutions.resolve_dispute(dispute.id, decision, users["mediator"])

        assert resolved.status == DisputeStatus.RESOLVED.value
        assert resolved.resolved_at is not None
        assert resolved.assigned_mediator == users["mediator"].user_id
        assert resolved.resolution_type == "partial_refund"
        assert order.refunded_amount == 200.0

        messages = resolutions.disputes.list_messages(dispute.id, users["buyer"])
        assert "Refund Amount: ₹200.00" in messages[-1].message
        assert "Conditions: Return damaged units" in messages[-1].message

    def test_refund_resolution_needs_amount(self, resolutions, dispute, users):
        decision = ResolutionDecision(resolution_type=ResolutionType.REFUND, summary="Refund")
        with pytest.raises(ValidationError):
            resolutions.resolve_dispute(dispute.id, decision, users["admin"])

    def test_failed_refund_blocks_resolution(self, session, dispute, users, tmp_path):
        failing = ResolutionService(
            session, SimulatedPaymentGateway(failure="Gateway down"), evidence_dir=str(tmp_path)
        )
        decision = ResolutionDecision(resolution_type=ResolutionType.REFUND, summary="Refund", refund_amount=100)
        with pytest.raises(PaymentGatewayError):
            failing.resolve_dispute(dispute.id, decision, users["admin"])

    def test_only_admins_resolve(self, resolutions, dispute, users):
        decision = ResolutionDecision(resolution_type=ResolutionType.NO_ACTION, summary="Fine")
        with pytest.raises(PermissionDeniedError):
            resolutions.resolve_dispute(dispute.id, decision, users["buyer"])

    def test_cannot_resolve_twice(self, resolutions, dispute, users):
        decision = ResolutionDecision(resolution_type=ResolutionType.REPLACEMENT, summary="Ship new units")
        resolutions.resolve_dispute(dispute.id, decision, users["admin"])
        with pytest.raises(ConflictError):
            resolutions.resolve_dispute(dispute.id, decision, users["admin"])

    def test_reopen_and_close(self, resolutions, dispute, users):
        decision = ResolutionDecision(resolution_type=ResolutionType.NO_ACTION, summary="Within tolerance")
        resolutions.resolve_dispute(dispute.id, decision, users["admin"])

        with pytest.raises(ValidationError):
            resolutions.reopen_dispute(dispute.id, "", users["admin"])
        reopened = resolutions.reopen_dispute(dispute.id, "New photos", users["admin"])
        assert reopened.status == DisputeStatus.UNDER_REVIEW.value

        with pytest.raises(ConflictError):
            resolutions.reopen_dispute(dispute.id, "Again", users["admin"])

        closed = resolutions.close_dispute(dispute.id, users["admin"])
        assert closed.status == DisputeStatus.CLOSED.value

    def test_statistics_and_mediator_performance(self, resolutions, disputes, dispute, place_order, users):
        other = place_order()
        second = disputes.create_dispute(users["buyer"], other.id, "Wrong bolts", "x", DisputeType.WRONG_ITEM)
        disputes.escalate(second.id, "Supplier silent", users["buyer"])

        replacement = ResolutionDecision(resolution_type=ResolutionType.REPLACEMENT, summary="Replace")
        resolutions.resolve_dispute(dispute.id, replacement, users["mediator"])
        resolutions.resolve_dispute(second.id, replacement, users["mediator"])

        stats = resolutions.resolution_statistics()
        assert stats["total_resolved"] == 2
        assert stats["resolution_types"] == {"replacement": 2}
        assert stats["resolution_rate"] == 100.0

        performance = resolutions.mediator_performance()
        entry = performance[str(users["mediator"].user_id)]
        assert entry["total_resolved"] == 2
        assert entry["escalated_cases"] == 1
        assert entry["escalation_rate"] == 50.0
        assert "_days" not in entry

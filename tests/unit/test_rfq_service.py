"""Tests for the RFQ and quotation lifecycle."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from tradelink.data.schema import (
    RFQ,
    Notification,
    Order,
    OrderStatus,
    PaymentStatus,
    Quotation,
    QuotationStatus,
    RFQStatus,
)
from tradelink.services import (
    ConflictError,
    CreditService,
    NotFoundError,
    PermissionDeniedError,
    RFQService,
    SupplierRestrictedError,
    ValidationError,
)
from tradelink.utils.helpers import utcnow


@pytest.fixture
def rfqs(session):
    return RFQService(session)


@pytest.fixture
def rfq(rfqs, users):
    return rfqs.create_rfq(users["buyer"], "Hex bolts M8", quantity=500, description="Zinc plated")


class TestCreateRFQ:
    """Tests for buyer RFQ creation."""

    def test_create_defaults(self, rfq, users):
        assert rfq.id is not None
        assert rfq.buyer_id == users["buyer"].user_id
        assert rfq.status == RFQStatus.OPEN.value
        # Default expiry is 30 days out
        assert timedelta(days=29) < rfq.expires_at - utcnow() <= timedelta(days=30)

    def test_only_buyers_can_create(self, rfqs, users):
        with pytest.raises(PermissionDeniedError):
            rfqs.create_rfq(users["supplier"], "Bolts", quantity=10)

    def test_quantity_must_be_positive(self, rfqs, users):
        with pytest.raises(ValidationError):
            rfqs.create_rfq(users["buyer"], "Bolts", quantity=0)

    def test_expiry_must_be_in_future(self, rfqs, users):
        with pytest.raises(ValidationError):
            rfqs.create_rfq(users["buyer"], "Bolts", quantity=10, expires_at=utcnow() - timedelta(hours=1))


class TestBuyerOperations:
    """Tests for update, close, delete and extend."""

    def test_update_only_open_and_owned(self, rfqs, rfq, users):
        updated = rfqs.update_rfq(rfq.id, users["buyer"], title="Hex bolts M10", quantity=None)
        assert updated.title == "Hex bolts M10"
        assert updated.quantity == 500

        with pytest.raises(PermissionDeniedError):
            rfqs.update_rfq(rfq.id, users["other_buyer"], title="Mine now")

        rfqs.close_rfq(rfq.id, users["buyer"])
        with pytest.raises(ConflictError):
            rfqs.update_rfq(rfq.id, users["buyer"], title="Too late")

    def test_delete_without_quotations(self, rfqs, rfq, users, session):
        rfqs.delete_rfq(rfq.id, users["buyer"])
        assert session.get(RFQ, rfq.id) is None

    def test_delete_with_quotations_conflicts(self, rfqs, rfq, users):
        rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.5)
        with pytest.raises(ConflictError):
            rfqs.delete_rfq(rfq.id, users["buyer"])

    def test_extend_reopens_expired_rfq(self, rfqs, rfq, users):
        rfq.status = RFQStatus.EXPIRED.value
        rfq.expires_at = utcnow() - timedelta(days=1)

        new_expiry = utcnow() + timedelta(days=10)
        extended = rfqs.extend_expiration(rfq.id, users["buyer"], new_expiry)

        assert extended.status == RFQStatus.OPEN.value
        assert extended.expires_at == new_expiry

    def test_extend_must_move_forward(self, rfqs, rfq, users):
        with pytest.raises(ValidationError):
            rfqs.extend_expiration(rfq.id, users["buyer"], rfq.expires_at - timedelta(days=1))

    def test_extend_closed_conflicts(self, rfqs, rfq, users):
        rfqs.close_rfq(rfq.id, users["buyer"])
        with pytest.raises(ConflictError):
            rfqs.extend_expiration(rfq.id, users["buyer"], utcnow() + timedelta(days=60))

    def test_get_rfq_hides_other_buyers(self, rfqs, rfq, users):
        with pytest.raises(NotFoundError):
            rfqs.get_rfq(rfq.id, users["other_buyer"])

    def test_get_rfq_supplier_view(self, rfqs, rfq, users):
        before = rfqs.get_rfq(rfq.id, users["supplier"])
        assert before["has_quoted"] is False
        assert before["quotation_count"] == 0

        rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=2.0)
        after = rfqs.get_rfq(rfq.id, users["supplier"])
        assert after["has_quoted"] is True
        assert after["quotation_count"] == 1


class TestQuotations:
    """Tests for supplier quotations."""

    def test_total_defaults_to_unit_price_times_quantity(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.25, lead_time_days=14)
        assert quotation.total_price == 625.0
        assert quotation.status == QuotationStatus.SENT.value

    def test_buyer_notified_of_new_quotation(self, rfqs, rfq, users, session):
        rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        titles = session.scalars(
            select(Notification.title).where(Notification.user_id == users["buyer"].user_id)
        ).all()
        assert "New Quotation Received" in titles

    def test_one_quotation_per_supplier(self, rfqs, rfq, users):
        rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        with pytest.raises(ConflictError):
            rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=0.9)

    def test_price_must_be_positive(self, rfqs, rfq, users):
        with pytest.raises(ValidationError):
            rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=0)

    def test_closed_rfq_rejects_quotations(self, rfqs, rfq, users):
        rfqs.close_rfq(rfq.id, users["buyer"])
        with pytest.raises(ConflictError):
            rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)

    def test_restricted_supplier_cannot_quote(self, rfqs, rfq, users, session):
        CreditService(session).set_restriction(users["supplier"].user_id, True, "Unpaid commission")
        with pytest.raises(SupplierRestrictedError):
            rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)

    def test_update_recalculates_total(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        updated = rfqs.update_quotation(quotation.id, users["supplier"], price_per_unit=2.0)
        assert updated.total_price == 1000.0

    def test_withdraw_deletes(self, rfqs, rfq, users, session):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        rfqs.withdraw_quotation(quotation.id, users["supplier"])
        assert session.get(Quotation, quotation.id) is None

    def test_only_owner_can_withdraw(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        with pytest.raises(PermissionDeniedError):
            rfqs.withdraw_quotation(quotation.id, users["gold_supplier"])

    def test_get_quotation_visibility(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        assert rfqs.get_quotation(quotation.id, users["buyer"]).id == quotation.id
        assert rfqs.get_quotation(quotation.id, users["admin"]).id == quotation.id
        with pytest.raises(NotFoundError):
            rfqs.get_quotation(quotation.id, users["other_buyer"])
        with pytest.raises(NotFoundError):
            rfqs.get_quotation(quotation.id, users["gold_supplier"])


class TestAcceptance:
    """Tests for accepting and rejecting quotations."""

    def test_accept_creates_order_and_rejects_others(self, rfqs, rfq, users, session):
        winner = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        loser = rfqs.create_quotation(rfq.id, users["gold_supplier"], price_per_unit=1.2)

        rfqs.accept_quotation(winner.id, users["buyer"])

        assert winner.status == QuotationStatus.ACCEPTED.value
        assert loser.status == QuotationStatus.REJECTED.value
        assert loser.rejection_reason == "Another quotation was accepted"
        assert rfq.status == RFQStatus.CLOSED.value

        order = session.scalar(select(Order).where(Order.quotation_id == winner.id))
        assert order is not None
        assert winner.order_id == order.id
        assert order.total_amount == 500.0
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.order_number.startswith("ORD-")

    def test_only_rfq_owner_can_accept(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        with pytest.raises(PermissionDeniedError):
            rfqs.accept_quotation(quotation.id, users["other_buyer"])

    def test_cannot_accept_twice(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        rfqs.accept_quotation(quotation.id, users["buyer"])
        with pytest.raises(ConflictError):
            rfqs.accept_quotation(quotation.id, users["buyer"])

    def test_reject_records_reason(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        rejected = rfqs.reject_quotation(quotation.id, users["buyer"], reason="Too expensive")
        assert rejected.status == QuotationStatus.REJECTED.value
        assert rejected.rejection_reason == "Too expensive"
        # RFQ stays open for other offers
        assert rfq.status == RFQStatus.OPEN.value


class TestAnalyticsAndSweeps:
    """Tests for analytics and expiry sweeps."""

    def test_buyer_analytics(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        rfqs.create_quotation(rfq.id, users["gold_supplier"], price_per_unit=2.0)
        rfqs.accept_quotation(quotation.id, users["buyer"])

        stats = rfqs.buyer_analytics(users["buyer"].user_id)
        assert stats["total_rfqs"] == 1
        assert stats["rfqs_by_status"]["closed"] == 1
        assert stats["total_quotations_received"] == 2
        assert stats["average_quotations_per_rfq"] == 2.0
        assert stats["accepted_quotation_value"] == 500.0

    def test_supplier_analytics(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0)
        rfqs.accept_quotation(quotation.id, users["buyer"])

        stats = rfqs.supplier_analytics(users["supplier"].user_id)
        assert stats["total_quotations"] == 1
        assert stats["acceptance_rate"] == 100.0
        assert stats["total_value_accepted"] == 500.0

    def test_available_rfqs_excludes_closed(self, rfqs, rfq, users):
        other = rfqs.create_rfq(users["other_buyer"], "Nylon washers", quantity=1000)
        rfqs.close_rfq(rfq.id, users["buyer"])
        available = rfqs.list_available_rfqs()
        assert [r.id for r in available] == [other.id]

    def test_expire_rfqs(self, rfqs, rfq):
        assert rfqs.expire_rfqs(utcnow()) == 0
        assert rfqs.expire_rfqs(utcnow() + timedelta(days=31)) == 1
        assert rfq.status == RFQStatus.EXPIRED.value

    def test_expire_quotations_by_validity(self, rfqs, rfq, users):
        quotation = rfqs.create_quotation(rfq.id, users["supplier"], price_per_unit=1.0, validity_days=7)
        rfqs.create_quotation(rfq.id, users["gold_supplier"], price_per_unit=1.0)

        assert rfqs.expire_quotations(utcnow() + timedelta(days=6)) == 0
        assert rfqs.expire_quotations(utcnow() + timedelta(days=8)) == 1
        assert quotation.status == QuotationStatus.EXPIRED.value

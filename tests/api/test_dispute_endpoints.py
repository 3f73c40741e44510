"""Tests for dispute, evidence and refund endpoints."""

import base64

import pytest

from tradelink.services import SimulatedPaymentGateway

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture
def order(paid_order):
    return paid_order(1000.0)


@pytest.fixture
def dispute(client, headers, order):
    response = client.post(
        "/api/v1/disputes",
        json={
            "order_id": order["id"],
            "title": "Brackets arrived bent",
            "description": "Half of the brackets are deformed.",
            "type": "product_quality",
            "amount": 500.0,
        },
        headers=headers("buyer"),
    )
    assert response.status_code == 201
    return response.json()


def upload(client, headers, dispute_id, who, filename="bent.png", content=PNG, mimetype="image/png"):
    return client.post(
        f"/api/v1/disputes/{dispute_id}/evidence",
        json={
            "filename": filename,
            "mimetype": mimetype,
            "content_base64": base64.b64encode(content).decode(),
        },
        headers=headers(who),
    )


class TestDisputeLifecycle:
    """Tests for opening and moving disputes."""

    def test_create(self, dispute, users):
        assert dispute["status"] == "open"
        assert dispute["raised_by"] == users["buyer"].user_id
        assert dispute["supplier_id"] == users["supplier"].user_id

    def test_outsiders_cannot_open(self, client, headers, order):
        response = client.post(
            "/api/v1/disputes",
            json={
                "order_id": order["id"],
                "title": "Not mine",
                "description": "x",
                "type": "other",
            },
            headers=headers("other_buyer"),
        )
        assert response.status_code in (403, 404)

    def test_counterparty_notified(self, client, headers, dispute):
        notifications = client.get("/api/v1/notifications", headers=headers("supplier")).json()
        assert any(n["related_id"] == dispute["id"] for n in notifications)

    def test_list_is_scoped(self, client, headers, dispute):
        page = client.get("/api/v1/disputes", headers=headers("supplier")).json()
        assert page["total"] == 1
        assert page["items"][0]["id"] == dispute["id"]

        assert client.get("/api/v1/disputes", headers=headers("other_buyer")).json()["total"] == 0

    def test_bad_sort_order_rejected(self, client, headers):
        response = client.get("/api/v1/disputes", params={"sort_order": "sideways"}, headers=headers("admin"))
        assert response.status_code == 422

    def test_assign_and_escalate(self, client, headers, dispute, users):
        assigned = client.post(
            f"/api/v1/disputes/{dispute['id']}/assign",
            json={"mediator_id": users["mediator"].user_id},
            headers=headers("admin"),
        ).json()
        assert assigned["assigned_mediator"] == users["mediator"].user_id
        assert assigned["status"] == "under_review"

        escalated = client.post(
            f"/api/v1/disputes/{dispute['id']}/escalate",
            json={"reason": "No response from supplier"},
            headers=headers("buyer"),
        ).json()
        assert escalated["escalation_level"] == 1

    def test_invalid_status_change(self, client, headers, dispute):
        url = f"/api/v1/disputes/{dispute['id']}/status"
        assert client.post(url, json={"status": "closed"}, headers=headers("admin")).status_code == 200

        response = client.post(url, json={"status": "open"}, headers=headers("admin"))
        assert response.status_code == 409

    def test_internal_notes_hidden(self, client, headers, dispute):
        url = f"/api/v1/disputes/{dispute['id']}/messages"
        client.post(url, json={"message": "Photos attached"}, headers=headers("buyer"))
        client.post(url, json={"message": "Supplier has history", "is_internal": True}, headers=headers("admin"))

        buyer_view = client.get(url, headers=headers("buyer")).json()
        admin_view = client.get(url, headers=headers("admin")).json()

        assert [m["message"] for m in buyer_view] == ["Photos attached"]
        assert len(admin_view) == 2


class TestEvidenceEndpoints:
    """Tests for base64 evidence upload and download."""

    def test_upload_list_download(self, client, headers, dispute):
        uploaded = upload(client, headers, dispute["id"], "buyer")
        assert uploaded.status_code == 201
        evidence = uploaded.json()
        assert evidence["size"] == len(PNG)
        assert evidence["user_type"] == "buyer"

        grouped = client.get(f"/api/v1/disputes/{dispute['id']}/evidence", headers=headers("supplier")).json()
        assert [e["id"] for e in grouped["buyer"]] == [evidence["id"]]
        assert grouped["supplier"] == []

        download = client.get(
            f"/api/v1/disputes/{dispute['id']}/evidence/{evidence['id']}/download", headers=headers("admin")
        )
        assert download.status_code == 200
        assert download.content == PNG
        assert download.headers["content-type"] == "image/png"

    def test_invalid_base64(self, client, headers, dispute):
        response = client.post(
            f"/api/v1/disputes/{dispute['id']}/evidence",
            json={"filename": "x.png", "mimetype": "image/png", "content_base64": "not base64!"},
            headers=headers("buyer"),
        )
        assert response.status_code == 400
        assert response.json()["details"][0]["code"] == "INVALID_ENCODING"

    def test_disallowed_type(self, client, headers, dispute):
        response = upload(
            client, headers, dispute["id"], "buyer", filename="run.exe", mimetype="application/x-msdownload"
        )
        assert response.status_code == 400

    def test_remove_own_evidence(self, client, headers, dispute):
        evidence = upload(client, headers, dispute["id"], "buyer").json()
        url = f"/api/v1/disputes/{dispute['id']}/evidence/{evidence['id']}"

        assert client.delete(url, headers=headers("supplier")).status_code == 403
        assert client.delete(url, headers=headers("buyer")).status_code == 204

    def test_completeness(self, client, headers, dispute):
        url = f"/api/v1/disputes/{dispute['id']}/evidence/completeness"
        assert client.get(url, headers=headers("admin")).json()["is_complete"] is False

        upload(client, headers, dispute["id"], "buyer")
        upload(client, headers, dispute["id"], "supplier", filename="inspection.png")

        assert client.get(url, headers=headers("admin")).json()["is_complete"] is True


class TestResolutionEndpoints:
    """Tests for recommendation, resolution and refunds."""

    def test_recommendation_follows_evidence(self, client, headers, dispute):
        url = f"/api/v1/disputes/{dispute['id']}/recommendation"
        assert client.get(url, headers=headers("admin")).json()["recommended_action"] == "request_more_evidence"

        upload(client, headers, dispute["id"], "buyer")
        upload(client, headers, dispute["id"], "supplier", filename="inspection.png")

        recommendation = client.get(url, headers=headers("admin")).json()
        assert recommendation["recommended_action"] == "partial_refund"
        assert recommendation["risk_assessment"]["buyer_satisfaction"] == 75

    def test_resolve_with_partial_refund(self, client, headers, dispute, order, gateway):
        response = client.post(
            f"/api/v1/disputes/{dispute['id']}/resolve",
            json={
                "resolution_type": "partial_refund",
                "summary": "Refund for the bent half",
                "refund_percentage": 20,
            },
            headers=headers("admin"),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "resolved"
        assert gateway.calls == [("refund", order["order_number"], 200.0)]

        refreshed = client.get(f"/api/v1/orders/{order['id']}", headers=headers("buyer")).json()
        assert refreshed["refunded_amount"] == 200.0
        assert refreshed["payment_status"] == "partially_refunded"

        refunds = client.get("/api/v1/refunds", headers=headers("buyer")).json()
        assert [(r["refund_amount"], r["status"], r["dispute_id"]) for r in refunds] == [
            (200.0, "completed", dispute["id"])
        ]

    def test_only_admins_resolve(self, client, headers, dispute):
        response = client.post(
            f"/api/v1/disputes/{dispute['id']}/resolve",
            json={"resolution_type": "no_action", "summary": "Fine"},
            headers=headers("buyer"),
        )
        assert response.status_code == 403

    def test_reopen_and_close(self, client, headers, dispute):
        base = f"/api/v1/disputes/{dispute['id']}"
        client.post(f"{base}/resolve", json={"resolution_type": "no_action", "summary": "Ok"}, headers=headers("admin"))

        reopened = client.post(f"{base}/reopen", json={"reason": "New photos"}, headers=headers("admin"))
        assert reopened.json()["status"] == "under_review"

        closed = client.post(f"{base}/close", headers=headers("admin"))
        assert closed.json()["status"] == "closed"

    def test_statistics(self, client, headers, dispute):
        stats = client.get("/api/v1/disputes/statistics", headers=headers("admin")).json()
        assert stats["by_type"]["product_quality"] == 1
        assert client.get("/api/v1/disputes/statistics", headers=headers("buyer")).status_code == 403


class TestRefundEndpoints:
    """Tests for direct refunds."""

    def test_refund_bounds(self, client, headers, order):
        response = client.post(
            "/api/v1/refunds",
            json={"order_id": order["id"], "amount": 1000.01, "reason": "Too much"},
            headers=headers("admin"),
        )
        assert response.status_code == 400

    def test_full_refund(self, client, headers, order):
        refund = client.post(
            "/api/v1/refunds",
            json={"order_id": order["id"], "amount": 1000.0, "reason": "Order cancelled"},
            headers=headers("admin"),
        ).json()

        assert refund["status"] == "completed"
        assert refund["refund_type"] == "full"
        assert refund["commission_adjustment"] == 50.0

        refreshed = client.get(f"/api/v1/orders/{order['id']}", headers=headers("admin")).json()
        assert refreshed["payment_status"] == "refunded"
        assert refreshed["commission_amount"] == 0.0

    def test_parties_see_only_their_refunds(self, client, headers, order):
        refund = client.post(
            "/api/v1/refunds",
            json={"order_id": order["id"], "amount": 100.0, "reason": "Short shipment"},
            headers=headers("admin"),
        ).json()

        assert client.get(f"/api/v1/refunds/{refund['id']}", headers=headers("supplier")).status_code == 200
        assert client.get(f"/api/v1/refunds/{refund['id']}", headers=headers("other_buyer")).status_code == 404


class TestGatewayFailure:
    """Refunds against a gateway that declines every call."""

    @pytest.fixture
    def gateway(self):
        return SimulatedPaymentGateway(failure="Gateway down")

    def test_failed_refund_recorded_then_retried(self, client, headers, order, gateway):
        refund = client.post(
            "/api/v1/refunds",
            json={"order_id": order["id"], "amount": 100.0, "reason": "Short shipment"},
            headers=headers("admin"),
        ).json()
        assert refund["status"] == "failed"
        assert refund["failure_reason"] == "Gateway down"

        gateway.failure = None
        retried = client.post(f"/api/v1/refunds/{refund['id']}/retry", headers=headers("admin")).json()
        assert retried["status"] == "completed"

    def test_failed_refund_blocks_resolution(self, client, headers, dispute, order):
        response = client.post(
            f"/api/v1/disputes/{dispute['id']}/resolve",
            json={"resolution_type": "refund", "summary": "Refund", "refund_amount": 100},
            headers=headers("admin"),
        )

        assert response.status_code == 502
        assert response.json()["details"][0]["code"] == "PAYMENT_GATEWAY_ERROR"
        assert client.get(f"/api/v1/disputes/{dispute['id']}", headers=headers("admin")).json()["status"] == "open"
        assert client.get("/api/v1/refunds", headers=headers("admin")).json() == []

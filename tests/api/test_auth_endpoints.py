"""Tests for authentication and role checks across the API."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from tradelink.api.main import create_app
from tradelink.services import NotificationHub, SimulatedPaymentGateway


class TestAuthenticationRequired:
    """Requests without a valid token never reach a route."""

    def test_missing_token(self, client):
        response = client.get("/api/v1/orders")
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_expired_token(self, client, make_token, users):
        token = make_token(users["buyer"].user_id, "buyer", expires_delta=timedelta(minutes=-1))
        response = client.get("/api/v1/orders", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["message"] == "Token has expired"

    def test_health_is_public(self, client):
        assert client.get("/health").status_code == 200

    def test_me(self, client, headers, users):
        response = client.get("/api/v1/users/me", headers=headers("supplier"))
        assert response.status_code == 200
        assert response.json()["id"] == users["supplier"].user_id
        assert response.json()["role"] == "supplier"


class TestRoleChecks:
    """Routes restricted by role answer 403."""

    @pytest.mark.parametrize(
        ("method", "path", "who"),
        [
            ("get", "/api/v1/users", "buyer"),
            ("get", "/api/v1/commissions/rates", "supplier"),
            ("get", "/api/v1/credit/suppliers", "buyer"),
            ("get", "/api/v1/rfqs/available", "buyer"),
            ("get", "/api/v1/quotations", "buyer"),
            ("post", "/api/v1/payouts/process-pending", "supplier"),
            ("get", "/api/v1/disputes/statistics", "supplier"),
        ],
    )
    def test_forbidden(self, client, headers, method, path, who):
        response = getattr(client, method)(path, headers=headers(who))
        assert response.status_code == 403
        assert response.json()["details"][0]["code"] == "PERMISSION_DENIED"

    def test_error_response_shape(self, client, headers):
        response = client.get("/api/v1/users", headers=headers("buyer"))
        body = response.json()

        assert set(body) == {"error", "details", "request_id", "timestamp"}
        assert body["request_id"] == response.headers["X-Correlation-ID"]


class TestUserEndpoints:
    """Tests for account administration."""

    def test_admin_creates_supplier(self, client, headers):
        created = client.post(
            "/api/v1/users",
            json={"email": "Sales@Rivets.test", "name": "Rivet Co", "role": "supplier", "membership_tier": "gold"},
            headers=headers("admin"),
        )
        assert created.status_code == 201
        assert created.json()["email"] == "sales@rivets.test"

        profile = client.get(
            f"/api/v1/users/{created.json()['id']}/supplier-profile", headers=headers("admin")
        ).json()
        assert profile["membership_tier"] == "gold"
        assert profile["commission_credit_limit"] == 10000.0

    def test_duplicate_email(self, client, headers):
        response = client.post(
            "/api/v1/users",
            json={"email": "buyer@acme.test", "name": "Again", "role": "buyer"},
            headers=headers("admin"),
        )
        assert response.status_code == 409

    def test_supplier_updates_payout_details(self, client, headers):
        response = client.patch(
            "/api/v1/users/me/supplier-profile",
            json={"paypal_email": "pay@steelworks.test"},
            headers=headers("supplier"),
        )
        assert response.status_code == 200
        assert response.json()["paypal_email"] == "pay@steelworks.test"

    def test_supplier_cannot_change_tier(self, client, headers):
        response = client.patch(
            "/api/v1/users/me/supplier-profile",
            json={"membership_tier": "platinum"},
            headers=headers("supplier"),
        )
        assert response.status_code == 403

    def test_cannot_view_other_accounts(self, client, headers, users):
        response = client.get(f"/api/v1/users/{users['buyer'].user_id}", headers=headers("other_buyer"))
        assert response.status_code == 403


class TestDemoMode:
    """With authentication disabled every request acts as admin user 1."""

    @pytest.fixture
    def demo_client(self, monkeypatch, database, users, tmp_path):
        monkeypatch.setenv("TRADELINK_AUTH_ENABLED", "false")
        monkeypatch.setenv("TRADELINK_RATE_LIMIT_ENABLED", "false")
        monkeypatch.setenv("TRADELINK_SCHEDULER_ENABLED", "false")
        app = create_app(database, NotificationHub(), SimulatedPaymentGateway(), str(tmp_path))
        with TestClient(app) as client:
            yield client

    def test_requests_act_as_first_admin(self, demo_client, users):
        me = demo_client.get("/api/v1/users/me").json()
        assert me["id"] == users["admin"].user_id == 1
        assert me["role"] == "admin"

    def test_admin_routes_open(self, demo_client):
        assert demo_client.get("/api/v1/commissions/rates").status_code == 200

"""Fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from tradelink.api.main import create_app
from tradelink.services import NotificationHub, SimulatedPaymentGateway


@pytest.fixture
def auth_env(monkeypatch, jwt_secret):
    """Enable JWT auth and switch off rate limiting for the app under test."""
    monkeypatch.setenv("TRADELINK_AUTH_ENABLED", "true")
    monkeypatch.setenv("TRADELINK_JWT_SECRET", jwt_secret)
    monkeypatch.setenv("TRADELINK_RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("TRADELINK_SCHEDULER_ENABLED", "false")
    monkeypatch.delenv("TRADELINK_AUTH_EXCLUDE_PATHS", raising=False)


@pytest.fixture
def gateway():
    return SimulatedPaymentGateway()


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def app(auth_env, database, users, hub, gateway, tmp_path):
    """App wired to the seeded in-memory database."""
    return create_app(database, hub, gateway, str(tmp_path / "evidence"))


@pytest.fixture
def client(app):
    """Create a test client for the API."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def headers(make_token, users):
    """Authorization headers for a seeded account by name."""

    def _headers(name: str) -> dict[str, str]:
        actor = users[name]
        return {"Authorization": f"Bearer {make_token(actor.user_id, actor.role)}"}

    return _headers


@pytest.fixture
def paid_order(client, headers):
    """Walk an order through RFQ, quotation, acceptance and payment over HTTP."""

    def _paid_order(total: float = 1000.0, supplier: str = "supplier") -> dict:
        rfq = client.post(
            "/api/v1/rfqs",
            json={"title": "Steel brackets", "quantity": 100},
            headers=headers("buyer"),
        ).json()
        quotation = client.post(
            f"/api/v1/rfqs/{rfq['id']}/quotations",
            json={"price_per_unit": round(total / 100, 2), "total_price": total},
            headers=headers(supplier),
        ).json()
        accepted = client.post(
            f"/api/v1/quotations/{quotation['id']}/accept", headers=headers("buyer")
        ).json()
        response = client.post(
            f"/api/v1/orders/{accepted['order_id']}/mark-paid", headers=headers("admin")
        )
        assert response.status_code == 200
        return response.json()

    return _paid_order

"""Tests for infrastructure modules and configuration."""

import jwt
import pytest
import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tradelink import __version__
from tradelink.infrastructure import (
    CORRELATION_ID_HEADER,
    bind_actor,
    bind_context,
    bound_context,
    clear_context,
    configure_structlog,
    generate_correlation_id,
    get_correlation_id,
    get_logger,
    get_or_create_correlation_id,
    record_request,
    reset_correlation_context,
    set_correlation_id,
    set_health_status,
)
from tradelink.infrastructure.logging_config import add_environment, add_service_info, mask_sensitive_fields
from tradelink.middleware import JWTAuthMiddleware
from tradelink.models import PlatformPolicy, Settings, get_platform_policy
from tradelink.models.config import _merge


class TestCorrelation:
    """Tests for correlation ID handling."""

    @pytest.fixture(autouse=True)
    def reset(self):
        reset_correlation_context()
        yield
        reset_correlation_context()

    def test_header_name(self):
        assert CORRELATION_ID_HEADER == "X-Correlation-ID"

    def test_generate_is_unique(self):
        assert generate_correlation_id() != generate_correlation_id()

    def test_set_and_get(self):
        set_correlation_id("req-123")
        assert get_correlation_id() == "req-123"
        assert structlog.contextvars.get_contextvars()["correlation_id"] == "req-123"

    def test_get_or_create(self):
        assert get_correlation_id() is None
        created = get_or_create_correlation_id()
        assert created
        assert get_or_create_correlation_id() == created

    def test_clear_context(self):
        bind_context(user_id=7)
        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestLogging:
    """Tests for structlog configuration and context binding."""

    @pytest.fixture(autouse=True)
    def reset(self):
        clear_context()
        yield
        clear_context()
        configure_structlog()

    def test_get_logger(self):
        logger = get_logger("tradelink.test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")

    def test_processors_add_service_fields(self):
        event = add_service_info(None, "info", add_environment(None, "info", {"event": "x"}))
        assert event["service"] == "tradelink-marketplace"
        assert event["version"] == __version__
        assert event["environment"]

    def test_environment_comes_from_settings(self, monkeypatch):
        monkeypatch.setenv("TRADELINK_ENV", "staging")
        configure_structlog()
        assert add_environment(None, "info", {})["environment"] == "staging"

    def test_payout_destination_masked(self):
        event = mask_sensitive_fields(
            None,
            "info",
            {
                "event": "payout_transfer_requested",
                "amount": 950.0,
                "destination": {"bank_name": "First Bank", "account_number": "12345678"},
                "api_key": "sk_live",
            },
        )
        assert event["destination"] == {"bank_name": "First Bank", "account_number": "***"}
        assert event["api_key"] == "***"
        assert event["amount"] == 950.0

    def test_bind_actor(self):
        bind_actor(3, "supplier")
        assert structlog.contextvars.get_contextvars() == {"user_id": 3, "role": "supplier"}

    def test_bound_context_is_scoped(self):
        bind_context(job="daily_commission")
        with bound_context(payout_id=9):
            assert structlog.contextvars.get_contextvars() == {"job": "daily_commission", "payout_id": 9}
        assert structlog.contextvars.get_contextvars() == {"job": "daily_commission"}

    def test_request_binds_authenticated_caller(self, monkeypatch, jwt_secret):
        monkeypatch.setenv("TRADELINK_AUTH_ENABLED", "true")
        monkeypatch.setenv("TRADELINK_JWT_SECRET", jwt_secret)
        seen = {}

        app = FastAPI()
        app.add_middleware(JWTAuthMiddleware)

        @app.get("/api/v1/whoami")
        async def whoami():
            seen.update(structlog.contextvars.get_contextvars())
            return {}

        token = jwt.encode({"sub": "3", "role": "supplier"}, jwt_secret, algorithm="HS256")
        response = TestClient(app).get("/api/v1/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert seen["user_id"] == 3
        assert seen["role"] == "supplier"


class TestMetrics:
    """Tests for Prometheus helpers."""

    def test_record_request(self):
        labels = {"endpoint": "/api/v1/rfqs", "method": "GET", "status": "200"}
        before = REGISTRY.get_sample_value("tradelink_requests_total", labels) or 0

        record_request("/api/v1/rfqs", "GET", 200, 0.02)

        assert REGISTRY.get_sample_value("tradelink_requests_total", labels) == before + 1
        assert REGISTRY.get_sample_value(
            "tradelink_request_duration_seconds_count", {"endpoint": "/api/v1/rfqs"}
        )

    def test_health_status(self):
        set_health_status("database", False)
        assert REGISTRY.get_sample_value("tradelink_health_check_status", {"component": "database"}) == 0
        set_health_status("database", True)
        assert REGISTRY.get_sample_value("tradelink_health_check_status", {"component": "database"}) == 1


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("TRADELINK_RFQ_DEFAULT_EXPIRY_DAYS", raising=False)
        settings = Settings(_env_file=None)
        assert settings.rfq_default_expiry_days == 30
        assert settings.commission_due_days == 30
        assert settings.default_credit_limit == 10000.0
        assert settings.payment_gateway_url == ""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TRADELINK_COMMISSION_DUE_DAYS", "14")
        monkeypatch.setenv("TRADELINK_SCHEDULER_ENABLED", "true")
        settings = Settings(_env_file=None)
        assert settings.commission_due_days == 14
        assert settings.scheduler_enabled is True

    def test_environment_and_rate_limit_redis(self, monkeypatch):
        monkeypatch.setenv("TRADELINK_ENV", "production")
        monkeypatch.setenv("TRADELINK_RATE_LIMIT_REDIS_URL", "redis://cache:6379/2")
        settings = Settings(_env_file=None)
        assert settings.environment == "production"
        assert settings.redis_url == "redis://cache:6379/2"

    def test_redis_unset_by_default(self, monkeypatch):
        monkeypatch.delenv("TRADELINK_RATE_LIMIT_REDIS_URL", raising=False)
        monkeypatch.delenv("TRADELINK_REDIS_URL", raising=False)
        assert Settings(_env_file=None).redis_url is None


class TestPlatformPolicy:
    """Tests for the YAML business-rule policy."""

    def test_singleton(self):
        assert PlatformPolicy() is PlatformPolicy()
        assert get_platform_policy() is get_platform_policy()

    def test_commission_rules(self):
        policy = get_platform_policy()
        assert policy.tier_rates == {"free": 5.0, "silver": 3.0, "gold": 2.0, "platinum": 1.5}
        assert policy.minimum_commission == 1.0
        assert policy.default_commission_rate == 5.0

    def test_evidence_and_payout_rules(self):
        policy = get_platform_policy()
        assert policy.max_evidence_size == 10 * 1024 * 1024
        assert "image/png" in policy.allowed_evidence_types
        assert "application/x-msdownload" not in policy.allowed_evidence_types
        assert policy.minimum_payout == 50.0
        assert (policy.payout_weekday, policy.payout_hour) == (4, 10)
        assert (policy.first_reminder_days, policy.final_warning_days) == (7, 14)

    def test_merge_overlays_nested_values(self):
        merged = _merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}, "c": 4})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}

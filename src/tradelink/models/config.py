"""Configuration settings for the marketplace service."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, ConfigDict, Field
from pydantic_settings import BaseSettings

# =============================================================================
# Platform Policy - Centralized Business Rule Configuration
# =============================================================================


class PlatformPolicy:
    """Centralized registry for marketplace business rules.

    Loads from config/marketplace.yaml and provides the commission defaults,
    evidence upload policy, reminder schedule and payout schedule.
    """

    _instance: "PlatformPolicy | None" = None
    _policy: dict[str, Any] = {}

    def __new__(cls) -> "PlatformPolicy":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_policy()
        return cls._instance

    def _load_policy(self) -> None:
        """Load the policy from YAML file."""
        config_paths = [
            Path(__file__).parent.parent.parent.parent / "config" / "marketplace.yaml",
            Path.cwd() / "config" / "marketplace.yaml",
            Path("/app/config/marketplace.yaml"),  # Docker path
        ]

        for path in config_paths:
            if path.exists():
                with open(path) as f:
                    loaded = yaml.safe_load(f) or {}
                self._policy = _merge(self._get_defaults(), loaded)
                return

        self._policy = self._get_defaults()

    def _get_defaults(self) -> dict[str, Any]:
        """Return default policy if the file is not found."""
        return {
            "commission": {
                "default_rate": 5.0,
                "tier_rates": {"free": 5.0, "silver": 3.0, "gold": 2.0, "platinum": 1.5},
                "minimum_commission": 1.0,
            },
            "evidence": {
                "max_file_size_bytes": 10 * 1024 * 1024,
                "allowed_mime_types": [
                    "image/jpeg",
                    "image/png",
                    "image/gif",
                    "application/pdf",
                    "text/plain",
                    "application/msword",
                    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
                    "video/mp4",
                    "video/avi",
                    "video/quicktime",
                ],
            },
            "reminders": {
                "first_reminder_days": 7,
                "final_warning_days": 14,
                "min_days_between": 7,
            },
            "payouts": {
                "minimum_amount": 50.0,
                "weekday": 4,  # Monday=0, Friday=4
                "hour": 10,
            },
        }

    @property
    def default_commission_rate(self) -> float:
        return float(self._policy["commission"]["default_rate"])

    @property
    def tier_rates(self) -> dict[str, float]:
        """Commission rate (%) per membership tier."""
        return {k: float(v) for k, v in self._policy["commission"]["tier_rates"].items()}

    @property
    def minimum_commission(self) -> float:
        return float(self._policy["commission"]["minimum_commission"])

    @property
    def max_evidence_size(self) -> int:
        return int(self._policy["evidence"]["max_file_size_bytes"])

    @property
    def allowed_evidence_types(self) -> list[str]:
        return list(self._policy["evidence"]["allowed_mime_types"])

    @property
    def first_reminder_days(self) -> int:
        return int(self._policy["reminders"]["first_reminder_days"])

    @property
    def final_warning_days(self) -> int:
        return int(self._policy["reminders"]["final_warning_days"])

    @property
    def min_days_between_reminders(self) -> int:
        return int(self._policy["reminders"]["min_days_between"])

    @property
    def minimum_payout(self) -> float:
        return float(self._policy["payouts"]["minimum_amount"])

    @property
    def payout_weekday(self) -> int:
        return int(self._policy["payouts"]["weekday"])

    @property
    def payout_hour(self) -> int:
        return int(self._policy["payouts"]["hour"])

    def reload(self) -> None:
        """Reload the policy from file."""
        self._load_policy()


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively overlay ``override`` onto ``base``."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@lru_cache
def get_platform_policy() -> PlatformPolicy:
    """Get cached PlatformPolicy instance."""
    return PlatformPolicy()


# =============================================================================
# Application Settings
# =============================================================================


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = ConfigDict(
        env_prefix="TRADELINK_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # TRADELINK_ENV; "production" switches logging to JSON
    environment: str = Field(
        "development", validation_alias=AliasChoices("TRADELINK_ENV", "TRADELINK_ENVIRONMENT")
    )

    # Database
    database_url: str = "sqlite:///data/tradelink.db"

    # Redis for the shared rate-limit window; unset keeps the window in memory
    redis_url: str | None = Field(
        None, validation_alias=AliasChoices("TRADELINK_RATE_LIMIT_REDIS_URL", "TRADELINK_REDIS_URL")
    )

    # RFQ / Quotation
    rfq_default_expiry_days: int = 30

    # Commission
    commission_due_days: int = 30
    commission_cache_ttl_seconds: int = 300
    default_credit_limit: float = 10000.0

    # Dispute evidence storage
    evidence_dir: str = "data/evidence"

    # Daily commission job
    scheduler_enabled: bool = False
    scheduler_interval_hours: float = 24.0

    # Payment gateway (empty URL = simulated gateway)
    payment_gateway_url: str = ""
    payment_gateway_api_key: str = ""
    payment_gateway_timeout_seconds: float = 30.0


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()

"""Commission rates, calculation and reporting.

Rate precedence for a supplier, highest first:

1. vendor override set by an admin in the platform settings
2. the supplier's custom commission rate
3. the category rate
4. the membership tier rate

A rate of 0 is a real rate at every level, not "unset".
"""

import time
from datetime import datetime, timedelta

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tradelink.data.schema import (
    Commission,
    CommissionSettings,
    CommissionStatus,
    Order,
    PaymentStatus,
    SupplierProfile,
)
from tradelink.infrastructure.logging_config import get_logger
from tradelink.infrastructure.metrics import commission_amount_total
from tradelink.models.config import get_platform_policy, get_settings
from tradelink.services.errors import NotFoundError, ValidationError
from tradelink.utils.helpers import round_money, utcnow

logger = get_logger(__name__)

TIER_ORDER = ("platinum", "gold", "silver", "free")


class CommissionRates(BaseModel):
    """Platform commission rates in percent."""

    default_rate: float
    free_rate: float
    silver_rate: float
    gold_rate: float
    platinum_rate: float
    category_rates: dict[str, float] = Field(default_factory=dict)
    vendor_overrides: dict[str, float] = Field(default_factory=dict)

    def tier_rate(self, tier: str | None) -> float:
        return {
            "free": self.free_rate,
            "silver": self.silver_rate,
            "gold": self.gold_rate,
            "platinum": self.platinum_rate,
        }.get(tier or "free", self.default_rate)


class CommissionCalculation(BaseModel):
    order_id: int | None = None
    supplier_id: int
    order_amount: float
    commission_rate: float
    commission_amount: float
    supplier_amount: float
    calculated_at: datetime


# In-process rates cache shared by all sessions
_rates_cache: dict = {"rates": None, "loaded_at": 0.0}


def clear_rates_cache() -> None:
    _rates_cache["rates"] = None
    _rates_cache["loaded_at"] = 0.0


def _check_rate(name: str, value: float) -> float:
    if value is None or not 0 <= float(value) <= 100:
        raise ValidationError(f"{name} must be between 0 and 100", code="INVALID_RATE")
    return float(value)


class CommissionService:
    """Resolve commission rates and apply them to paid orders."""

    def __init__(self, session: Session):
        self.session = session
        self.settings = get_settings()
        self.policy = get_platform_policy()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def _settings_row(self) -> CommissionSettings:
        row = self.session.scalar(select(CommissionSettings).order_by(CommissionSettings.id).limit(1))
        if row is None:
            tiers = self.policy.tier_rates
            row = CommissionSettings(
                default_rate=self.policy.default_commission_rate,
                free_rate=tiers.get("free", self.policy.default_commission_rate),
                silver_rate=tiers.get("silver", self.policy.default_commission_rate),
                gold_rate=tiers.get("gold", self.policy.default_commission_rate),
                platinum_rate=tiers.get("platinum", self.policy.default_commission_rate),
                category_rates={},
                vendor_overrides={},
            )
            self.session.add(row)
            self.session.flush()
            logger.info("commission_settings_initialized")
        return row

    def get_commission_rates(self) -> CommissionRates:
        """Current rates, cached for ``commission_cache_ttl_seconds``."""
        cached = _rates_cache["rates"]
        age = time.monotonic() - _rates_cache["loaded_at"]
        if cached is not None and age < self.settings.commission_cache_ttl_seconds:
            return cached

        row = self._settings_row()
        rates = CommissionRates(
            default_rate=row.default_rate,
            free_rate=row.free_rate,
            silver_rate=row.silver_rate,
            gold_rate=row.gold_rate,
            platinum_rate=row.platinum_rate,
            category_rates={str(k): float(v) for k, v in (row.category_rates or {}).items()},
            vendor_overrides={str(k): float(v) for k, v in (row.vendor_overrides or {}).items()},
        )
        _rates_cache["rates"] = rates
        _rates_cache["loaded_at"] = time.monotonic()
        return rates

    def update_commission_settings(self, updates: dict, updated_by: int | None = None) -> CommissionRates:
        """Apply a partial settings update after validating every rate."""
        row = self._settings_row()

        for field in ("default_rate", "free_rate", "silver_rate", "gold_rate", "platinum_rate"):
            if updates.get(field) is not None:
                setattr(row, field, _check_rate(field, updates[field]))

        if updates.get("category_rates") is not None:
            row.category_rates = {
                str(k): _check_rate(f"category rate {k}", v) for k, v in updates["category_rates"].items()
            }
        if updates.get("vendor_overrides") is not None:
            row.vendor_overrides = {
                str(k): _check_rate(f"vendor override {k}", v) for k, v in updates["vendor_overrides"].items()
            }

        tiers = [row.platinum_rate, row.gold_rate, row.silver_rate, row.free_rate]
        if tiers != sorted(tiers):
            logger.warning(
                "commission_tier_order_unusual",
                platinum=row.platinum_rate,
                gold=row.gold_rate,
                silver=row.silver_rate,
                free=row.free_rate,
            )

        row.updated_by = updated_by
        row.updated_at = utcnow()
        self.session.flush()
        clear_rates_cache()
        logger.info("commission_settings_updated", updated_by=updated_by)
        return self.get_commission_rates()

    def set_supplier_commission_rate(self, supplier_id: int, rate: float | None) -> SupplierProfile:
        """Set or clear (``None``) a supplier's custom rate."""
        profile = self.session.get(SupplierProfile, supplier_id)
        if profile is None:
            raise NotFoundError(f"Supplier {supplier_id} not found")
        profile.custom_commission_rate = None if rate is None else _check_rate("rate", rate)
        self.session.flush()
        clear_rates_cache()
        logger.info("supplier_commission_rate_set", supplier_id=supplier_id, rate=rate)
        return profile

    # ------------------------------------------------------------------
    # Calculation
    # ------------------------------------------------------------------

    def calculate_commission_rate(self, supplier_id: int, category_id: int | None = None) -> float:
        rates = self.get_commission_rates()

        override = rates.vendor_overrides.get(str(supplier_id))
        if override is not None:
            return override

        profile = self.session.get(SupplierProfile, supplier_id)
        if profile is None:
            return rates.default_rate

        if profile.custom_commission_rate is not None:
            return float(profile.custom_commission_rate)

        if category_id is not None:
            category_rate = rates.category_rates.get(str(category_id))
            if category_rate is not None:
                return category_rate

        return rates.tier_rate(profile.membership_tier)

    def calculate_order_commission(
        self,
        supplier_id: int,
        order_amount: float,
        category_id: int | None = None,
        order_id: int | None = None,
    ) -> CommissionCalculation:
        if order_amount < 0:
            raise ValidationError("Order amount cannot be negative")

        rate = self.calculate_commission_rate(supplier_id, category_id)
        if rate == 0 or order_amount == 0:
            commission = 0.0
        else:
            commission = max(order_amount * rate / 100, self.policy.minimum_commission)
            commission = round_money(min(commission, order_amount))

        return CommissionCalculation(
            order_id=order_id,
            supplier_id=supplier_id,
            order_amount=round_money(order_amount),
            commission_rate=rate,
            commission_amount=commission,
            supplier_amount=round_money(order_amount - commission),
            calculated_at=utcnow(),
        )

    def apply_commission_to_order(self, order: Order) -> Commission:
        """Write commission figures onto a paid order and open its commission record."""
        calc = self.calculate_order_commission(
            order.supplier_id, order.total_amount, order.category_id, order.id
        )
        order.commission_rate = calc.commission_rate
        order.commission_amount = calc.commission_amount
        order.supplier_amount = calc.supplier_amount

        now = utcnow()
        commission = Commission(
            order_id=order.id,
            supplier_id=order.supplier_id,
            order_amount=calc.order_amount,
            commission_rate=calc.commission_rate,
            commission_amount=calc.commission_amount,
            status=CommissionStatus.UNPAID.value,
            due_date=now + timedelta(days=self.settings.commission_due_days),
            created_at=now,
        )
        self.session.add(commission)
        self.session.flush()

        commission_amount_total.inc(calc.commission_amount)
        logger.info(
            "commission_applied",
            order_id=order.id,
            supplier_id=order.supplier_id,
            rate=calc.commission_rate,
            amount=calc.commission_amount,
        )
        return commission

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _paid_orders(self, start: datetime | None, end: datetime | None):
        stmt = select(Order).where(
            Order.payment_status != PaymentStatus.PENDING.value,
            Order.commission_amount.is_not(None),
        )
        if start is not None:
            stmt = stmt.where(Order.created_at >= start)
        if end is not None:
            stmt = stmt.where(Order.created_at <= end)
        return stmt

    @staticmethod
    def _summarize(orders: list[Order]) -> dict:
        total_sales = round_money(sum(o.total_amount for o in orders))
        total_commission = round_money(sum(o.commission_amount or 0 for o in orders))
        average_rate = (
            round(sum(o.commission_rate or 0 for o in orders) / len(orders), 2) if orders else 0.0
        )
        return {
            "total_orders": len(orders),
            "total_sales": total_sales,
            "total_commission": total_commission,
            "total_supplier_amount": round_money(total_sales - total_commission),
            "average_commission_rate": average_rate,
        }

    def supplier_commission_summary(
        self, supplier_id: int, start: datetime | None = None, end: datetime | None = None
    ) -> dict:
        stmt = self._paid_orders(start, end).where(Order.supplier_id == supplier_id)
        summary = self._summarize(list(self.session.scalars(stmt)))
        summary["supplier_id"] = supplier_id
        summary["current_rate"] = self.calculate_commission_rate(supplier_id)
        return summary

    def platform_commission_summary(self, start: datetime | None = None, end: datetime | None = None) -> dict:
        orders = list(self.session.scalars(self._paid_orders(start, end)))
        summary = self._summarize(orders)
        summary["supplier_count"] = len({o.supplier_id for o in orders})
        return summary

    def commission_tracking_report(
        self,
        supplier_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Order]:
        stmt = select(Order).where(Order.commission_amount.is_not(None))
        if supplier_id is not None:
            stmt = stmt.where(Order.supplier_id == supplier_id)
        if start is not None:
            stmt = stmt.where(Order.created_at >= start)
        if end is not None:
            stmt = stmt.where(Order.created_at <= end)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).offset(offset)
        return list(self.session.scalars(stmt))

    def list_supplier_commissions(
        self, supplier_id: int, statuses: list[CommissionStatus] | None = None
    ) -> list[Commission]:
        stmt = select(Commission).where(Commission.supplier_id == supplier_id)
        if statuses:
            stmt = stmt.where(Commission.status.in_([CommissionStatus(s).value for s in statuses]))
        return list(self.session.scalars(stmt.order_by(Commission.due_date)))

    def outstanding_total(self, supplier_id: int) -> float:
        total = self.session.scalar(
            select(func.coalesce(func.sum(Commission.commission_amount), 0.0)).where(
                Commission.supplier_id == supplier_id,
                Commission.status.in_(
                    [
                        CommissionStatus.UNPAID.value,
                        CommissionStatus.OVERDUE.value,
                        CommissionStatus.PAYMENT_SUBMITTED.value,
                    ]
                ),
            )
        )
        return round_money(total or 0)

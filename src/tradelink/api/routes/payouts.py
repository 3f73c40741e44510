"""Supplier payout endpoints."""

from datetime import datetime

from fastapi import APIRouter, Query, status

from tradelink.data.schema import PayoutStatus
from tradelink.services import Actor, PayoutService, ValidationError
from tradelink.utils.helpers import to_naive_utc

from ..deps import AdminUser, GatewayDep, HubDep, SessionDep, SupplierOrAdmin
from ..schemas import PayoutResponse, SchedulePayoutRequest

router = APIRouter(prefix="/api/v1/payouts", tags=["Payouts"])


def _target_supplier(actor: Actor, supplier_id: int | None) -> int:
    """Suppliers act on themselves; admins must name the supplier."""
    if actor.is_supplier:
        return actor.user_id
    if supplier_id is None:
        raise ValidationError("supplier_id is required")
    return supplier_id


@router.get("", response_model=list[PayoutResponse])
def list_payouts(
    actor: SupplierOrAdmin,
    session: SessionDep,
    supplier_id: int | None = None,
    payout_status: PayoutStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    if actor.is_supplier:
        supplier_id = actor.user_id
    return PayoutService(session).list_payouts(
        supplier_id=supplier_id, status=payout_status, limit=limit, offset=offset
    )


@router.get("/pending")
def pending_payout(
    actor: SupplierOrAdmin, session: SessionDep, supplier_id: int | None = None
) -> dict:
    """Earnings ready to be paid out; ``eligible`` is false below the minimum payout."""
    pending = PayoutService(session).calculate_pending_payout(_target_supplier(actor, supplier_id))
    return {"eligible": pending is not None, "payout": pending}


@router.get("/earnings")
def supplier_earnings(
    actor: SupplierOrAdmin, session: SessionDep, supplier_id: int | None = None
) -> dict:
    return PayoutService(session).supplier_earnings(_target_supplier(actor, supplier_id))


@router.get("/summary")
def payout_summary(
    actor: AdminUser,
    session: SessionDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    return PayoutService(session).payout_summary(to_naive_utc(start), to_naive_utc(end))


@router.post(
    "/schedule", response_model=list[PayoutResponse], status_code=status.HTTP_201_CREATED
)
def schedule_payout(body: SchedulePayoutRequest, actor: SupplierOrAdmin, session: SessionDep):
    supplier_id = _target_supplier(actor, body.supplier_id)
    return PayoutService(session).schedule_payout(supplier_id, body.method)


@router.post("/process-pending")
def process_pending(
    actor: AdminUser, session: SessionDep, gateway: GatewayDep, hub: HubDep
) -> dict:
    """Process every pending payout that is due."""
    return PayoutService(session, gateway, hub).process_all_pending()


@router.post("/{payout_id}/process", response_model=PayoutResponse)
def process_payout(
    payout_id: int, actor: AdminUser, session: SessionDep, gateway: GatewayDep, hub: HubDep
):
    return PayoutService(session, gateway, hub).process_payout(payout_id)


@router.post("/{payout_id}/retry", response_model=PayoutResponse)
def retry_payout(
    payout_id: int, actor: AdminUser, session: SessionDep, gateway: GatewayDep, hub: HubDep
):
    return PayoutService(session, gateway, hub).retry_failed_payout(payout_id)

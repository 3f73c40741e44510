"""Commission rate administration, calculation and reporting."""

from datetime import datetime

from fastapi import APIRouter, Query

from tradelink.data.schema import CommissionStatus
from tradelink.services import (
    Actor,
    CommissionCalculation,
    CommissionJobService,
    CommissionRates,
    CommissionService,
    PermissionDeniedError,
)
from tradelink.utils.helpers import to_naive_utc

from ..deps import AdminUser, CurrentUser, HubDep, SessionDep, SupplierUser
from ..schemas import (
    CommissionCalculationRequest,
    CommissionResponse,
    CommissionSettingsUpdate,
    MessageResponse,
    OrderResponse,
    SupplierProfileResponse,
    SupplierRateRequest,
)

router = APIRouter(prefix="/api/v1/commissions", tags=["Commissions"])


def _self_or_admin(actor: Actor, supplier_id: int) -> None:
    if not actor.is_admin and actor.user_id != supplier_id:
        raise PermissionDeniedError("Cannot view another supplier's commission data")


@router.get("/rates", response_model=CommissionRates)
def get_rates(actor: AdminUser, session: SessionDep):
    return CommissionService(session).get_commission_rates()


@router.patch("/rates", response_model=CommissionRates)
def update_rates(body: CommissionSettingsUpdate, actor: AdminUser, session: SessionDep):
    return CommissionService(session).update_commission_settings(
        body.model_dump(exclude_none=True), updated_by=actor.user_id
    )


@router.post("/calculate", response_model=CommissionCalculation)
def calculate_commission(body: CommissionCalculationRequest, actor: AdminUser, session: SessionDep):
    """Preview the commission an order would carry."""
    return CommissionService(session).calculate_order_commission(
        body.supplier_id, body.order_amount, body.category_id
    )


@router.get("/summary")
def platform_summary(
    actor: AdminUser,
    session: SessionDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    return CommissionService(session).platform_commission_summary(
        to_naive_utc(start), to_naive_utc(end)
    )


@router.get("/report", response_model=list[OrderResponse])
def tracking_report(
    actor: AdminUser,
    session: SessionDep,
    supplier_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    return CommissionService(session).commission_tracking_report(
        supplier_id, to_naive_utc(start), to_naive_utc(end), limit=limit, offset=offset
    )


@router.get("/mine", response_model=list[CommissionResponse])
def my_commissions(
    actor: SupplierUser,
    session: SessionDep,
    statuses: list[CommissionStatus] | None = Query(None, alias="status"),
):
    return CommissionService(session).list_supplier_commissions(actor.user_id, statuses)


@router.post("/run-daily-job")
def run_daily_job(actor: AdminUser, session: SessionDep, hub: HubDep) -> dict:
    """Run overdue marking, reminders and expiry sweeps now."""
    return CommissionJobService(session, hub).run_daily_job()


@router.get("/suppliers/{supplier_id}", response_model=list[CommissionResponse])
def supplier_commissions(
    supplier_id: int,
    actor: AdminUser,
    session: SessionDep,
    statuses: list[CommissionStatus] | None = Query(None, alias="status"),
):
    return CommissionService(session).list_supplier_commissions(supplier_id, statuses)


@router.get("/suppliers/{supplier_id}/rate")
def supplier_rate(
    supplier_id: int, actor: CurrentUser, session: SessionDep, category_id: int | None = None
) -> dict:
    _self_or_admin(actor, supplier_id)
    rate = CommissionService(session).calculate_commission_rate(supplier_id, category_id)
    return {"supplier_id": supplier_id, "category_id": category_id, "rate": rate}


@router.put("/suppliers/{supplier_id}/rate", response_model=SupplierProfileResponse)
def set_supplier_rate(
    supplier_id: int, body: SupplierRateRequest, actor: AdminUser, session: SessionDep
):
    return CommissionService(session).set_supplier_commission_rate(supplier_id, body.rate)


@router.get("/suppliers/{supplier_id}/summary")
def supplier_summary(
    supplier_id: int,
    actor: CurrentUser,
    session: SessionDep,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    _self_or_admin(actor, supplier_id)
    return CommissionService(session).supplier_commission_summary(
        supplier_id, to_naive_utc(start), to_naive_utc(end)
    )


@router.post("/suppliers/{supplier_id}/remind", response_model=MessageResponse)
def send_reminder(supplier_id: int, actor: AdminUser, session: SessionDep, hub: HubDep):
    CommissionJobService(session, hub).send_manual_reminder(supplier_id, actor.user_id)
    return MessageResponse(message="Reminder sent", data={"supplier_id": supplier_id})

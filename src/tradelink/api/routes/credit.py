"""Supplier credit, restriction and commission payment endpoints."""

from fastapi import APIRouter, Query, status

from tradelink.data.schema import SubmissionStatus
from tradelink.services import CreditService, CreditStatus, PermissionDeniedError

from ..deps import AdminUser, CurrentUser, HubDep, SessionDep, SupplierUser
from ..schemas import (
    CreditLimitRequest,
    PaymentSubmissionRequest,
    PaymentSubmissionResponse,
    RejectPaymentRequest,
    RestrictionRequest,
)

router = APIRouter(prefix="/api/v1/credit", tags=["Credit"])


@router.get("/me", response_model=CreditStatus)
def my_credit_status(actor: SupplierUser, session: SessionDep):
    return CreditService(session).get_credit_status(actor.user_id)


@router.get("/suppliers", response_model=list[CreditStatus])
def list_supplier_credit(actor: AdminUser, session: SessionDep):
    return CreditService(session).list_supplier_credit()


@router.get("/suppliers/{supplier_id}", response_model=CreditStatus)
def supplier_credit_status(supplier_id: int, actor: CurrentUser, session: SessionDep):
    if not actor.is_admin and actor.user_id != supplier_id:
        raise PermissionDeniedError("Cannot view another supplier's credit")
    return CreditService(session).get_credit_status(supplier_id)


@router.put("/suppliers/{supplier_id}/limit", response_model=CreditStatus)
def set_credit_limit(
    supplier_id: int, body: CreditLimitRequest, actor: AdminUser, session: SessionDep
):
    return CreditService(session).set_credit_limit(supplier_id, body.limit)


@router.put("/suppliers/{supplier_id}/restriction", response_model=CreditStatus)
def set_restriction(
    supplier_id: int,
    body: RestrictionRequest,
    actor: AdminUser,
    session: SessionDep,
    hub: HubDep,
):
    return CreditService(session, hub).set_restriction(supplier_id, body.is_restricted, body.reason)


@router.post(
    "/payments", response_model=PaymentSubmissionResponse, status_code=status.HTTP_201_CREATED
)
def submit_payment(body: PaymentSubmissionRequest, actor: SupplierUser, session: SessionDep):
    """Pay a set of outstanding commissions; an admin verifies it later."""
    return CreditService(session).submit_payment(
        actor.user_id, body.amount, body.commission_ids, body.payment_method
    )


@router.get("/payments", response_model=list[PaymentSubmissionResponse])
def list_payments(
    actor: CurrentUser,
    session: SessionDep,
    submission_status: SubmissionStatus | None = Query(None, alias="status"),
    supplier_id: int | None = None,
):
    if actor.is_supplier:
        supplier_id = actor.user_id
    elif not actor.is_admin:
        raise PermissionDeniedError("Only suppliers and admins can view payment submissions")
    return CreditService(session).list_submissions(status=submission_status, supplier_id=supplier_id)


@router.post("/payments/{submission_id}/approve", response_model=PaymentSubmissionResponse)
def approve_payment(submission_id: int, actor: AdminUser, session: SessionDep, hub: HubDep):
    return CreditService(session, hub).approve_payment(submission_id, actor.user_id)


@router.post("/payments/{submission_id}/reject", response_model=PaymentSubmissionResponse)
def reject_payment(
    submission_id: int,
    body: RejectPaymentRequest,
    actor: AdminUser,
    session: SessionDep,
    hub: HubDep,
):
    return CreditService(session, hub).reject_payment(submission_id, actor.user_id, body.reason)

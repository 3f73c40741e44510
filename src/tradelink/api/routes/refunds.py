"""Refund endpoints."""

from fastapi import APIRouter, Query, status

from tradelink.data.schema import RefundStatus
from tradelink.services import NotFoundError, RefundService

from ..deps import AdminUser, CurrentUser, GatewayDep, HubDep, SessionDep
from ..schemas import RefundRequest, RefundResponse

router = APIRouter(prefix="/api/v1/refunds", tags=["Refunds"])


@router.post("", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
def create_refund(
    body: RefundRequest, actor: AdminUser, session: SessionDep, gateway: GatewayDep, hub: HubDep
):
    """Refund part or all of a paid order; a gateway failure is recorded as a failed refund."""
    return RefundService(session, gateway, hub).process_refund(
        body.order_id, body.amount, body.reason, actor.user_id, dispute_id=body.dispute_id
    )


@router.get("", response_model=list[RefundResponse])
def list_refunds(
    actor: CurrentUser,
    session: SessionDep,
    order_id: int | None = None,
    dispute_id: int | None = None,
    refund_status: RefundStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    buyer_id = actor.user_id if actor.is_buyer else None
    supplier_id = actor.user_id if actor.is_supplier else None
    return RefundService(session).list_refunds(
        order_id=order_id,
        dispute_id=dispute_id,
        buyer_id=buyer_id,
        supplier_id=supplier_id,
        status=refund_status,
        limit=limit,
        offset=offset,
    )


@router.get("/{refund_id}", response_model=RefundResponse)
def get_refund(refund_id: int, actor: CurrentUser, session: SessionDep):
    refund = RefundService(session).get_refund(refund_id)
    if not actor.is_admin and actor.user_id not in (refund.buyer_id, refund.supplier_id):
        raise NotFoundError(f"Refund {refund_id} not found")
    return refund


@router.post("/{refund_id}/retry", response_model=RefundResponse)
def retry_refund(
    refund_id: int, actor: AdminUser, session: SessionDep, gateway: GatewayDep, hub: HubDep
):
    return RefundService(session, gateway, hub).retry_refund(refund_id)

"""Quotation endpoints: supplier management and buyer decisions."""

from fastapi import APIRouter, Query, Response, status

from tradelink.data.schema import QuotationStatus
from tradelink.services import RFQService

from ..deps import BuyerUser, CurrentUser, HubDep, SessionDep, SupplierUser
from ..schemas import QuotationResponse, QuotationUpdateRequest, RejectQuotationRequest

router = APIRouter(prefix="/api/v1/quotations", tags=["Quotations"])


@router.get("", response_model=list[QuotationResponse])
def list_my_quotations(
    actor: SupplierUser,
    session: SessionDep,
    quotation_status: QuotationStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    return RFQService(session).list_supplier_quotations(
        actor.user_id, status=quotation_status, limit=limit, offset=offset
    )


@router.get("/analytics")
def supplier_analytics(actor: SupplierUser, session: SessionDep) -> dict:
    return RFQService(session).supplier_analytics(actor.user_id)


@router.get("/{quotation_id}", response_model=QuotationResponse)
def get_quotation(quotation_id: int, actor: CurrentUser, session: SessionDep):
    return RFQService(session).get_quotation(quotation_id, actor)


@router.patch("/{quotation_id}", response_model=QuotationResponse)
def update_quotation(
    quotation_id: int, body: QuotationUpdateRequest, actor: SupplierUser, session: SessionDep
):
    return RFQService(session).update_quotation(
        quotation_id, actor, **body.model_dump(exclude_none=True)
    )


@router.delete("/{quotation_id}", status_code=status.HTTP_204_NO_CONTENT)
def withdraw_quotation(quotation_id: int, actor: SupplierUser, session: SessionDep) -> Response:
    RFQService(session).withdraw_quotation(quotation_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{quotation_id}/accept", response_model=QuotationResponse)
def accept_quotation(quotation_id: int, actor: BuyerUser, session: SessionDep, hub: HubDep):
    """Accept a quotation; the RFQ closes and an order is created."""
    return RFQService(session, hub).accept_quotation(quotation_id, actor)


@router.post("/{quotation_id}/reject", response_model=QuotationResponse)
def reject_quotation(
    quotation_id: int,
    actor: BuyerUser,
    session: SessionDep,
    hub: HubDep,
    body: RejectQuotationRequest | None = None,
):
    reason = body.reason if body else None
    return RFQService(session, hub).reject_quotation(quotation_id, actor, reason=reason)

"""RFQ endpoints for buyers, plus the supplier marketplace feed."""

from fastapi import APIRouter, Query, Response, status

from tradelink.data.schema import RFQStatus
from tradelink.services import PermissionDeniedError, RFQService, ValidationError
from tradelink.utils.helpers import to_naive_utc

from ..deps import BuyerOrAdmin, BuyerUser, CurrentUser, HubDep, SessionDep, SupplierUser
from ..schemas import (
    ExtendExpirationRequest,
    QuotationCreateRequest,
    QuotationResponse,
    RFQCreateRequest,
    RFQDetailResponse,
    RFQResponse,
    RFQUpdateRequest,
)

router = APIRouter(prefix="/api/v1/rfqs", tags=["RFQs"])


@router.post("", response_model=RFQResponse, status_code=status.HTTP_201_CREATED)
def create_rfq(body: RFQCreateRequest, actor: BuyerUser, session: SessionDep, hub: HubDep):
    return RFQService(session, hub).create_rfq(
        actor,
        title=body.title,
        quantity=body.quantity,
        description=body.description,
        category_id=body.category_id,
        target_price=body.target_price,
        delivery_location=body.delivery_location,
        expires_at=to_naive_utc(body.expires_at),
    )


@router.get("", response_model=list[RFQResponse])
def list_rfqs(
    actor: CurrentUser,
    session: SessionDep,
    rfq_status: RFQStatus | None = Query(None, alias="status"),
    search: str | None = None,
    buyer_id: int | None = Query(None, description="Admins only"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """A buyer's own RFQs; admins pick the buyer with ``buyer_id``."""
    if actor.is_admin:
        if buyer_id is None:
            raise ValidationError("buyer_id is required")
        owner = buyer_id
    elif actor.is_buyer:
        owner = actor.user_id
    else:
        raise PermissionDeniedError("Suppliers browse RFQs through /api/v1/rfqs/available")
    return RFQService(session).list_buyer_rfqs(
        owner, status=rfq_status, search=search, limit=limit, offset=offset
    )


@router.get("/available", response_model=list[RFQResponse])
def list_available_rfqs(
    actor: SupplierUser,
    session: SessionDep,
    category_id: int | None = None,
    search: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Open, unexpired RFQs suppliers can quote on."""
    return RFQService(session).list_available_rfqs(
        category_id=category_id, search=search, limit=limit, offset=offset
    )


@router.get("/analytics")
def buyer_analytics(actor: BuyerUser, session: SessionDep) -> dict:
    return RFQService(session).buyer_analytics(actor.user_id)


@router.get("/{rfq_id}", response_model=RFQDetailResponse)
def get_rfq(rfq_id: int, actor: CurrentUser, session: SessionDep):
    return RFQService(session).get_rfq(rfq_id, actor)


@router.patch("/{rfq_id}", response_model=RFQResponse)
def update_rfq(rfq_id: int, body: RFQUpdateRequest, actor: BuyerUser, session: SessionDep):
    return RFQService(session).update_rfq(rfq_id, actor, **body.model_dump(exclude_none=True))


@router.post("/{rfq_id}/close", response_model=RFQResponse)
def close_rfq(rfq_id: int, actor: BuyerUser, session: SessionDep):
    return RFQService(session).close_rfq(rfq_id, actor)


@router.delete("/{rfq_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rfq(rfq_id: int, actor: BuyerUser, session: SessionDep) -> Response:
    RFQService(session).delete_rfq(rfq_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{rfq_id}/extend", response_model=RFQResponse)
def extend_expiration(
    rfq_id: int, body: ExtendExpirationRequest, actor: BuyerUser, session: SessionDep
):
    return RFQService(session).extend_expiration(rfq_id, actor, to_naive_utc(body.expires_at))


@router.get("/{rfq_id}/quotations", response_model=list[QuotationResponse])
def list_rfq_quotations(rfq_id: int, actor: BuyerOrAdmin, session: SessionDep):
    """Quotations on an RFQ, cheapest first."""
    return RFQService(session).list_rfq_quotations(rfq_id, actor)


@router.post(
    "/{rfq_id}/quotations", response_model=QuotationResponse, status_code=status.HTTP_201_CREATED
)
def create_quotation(
    rfq_id: int, body: QuotationCreateRequest, actor: SupplierUser, session: SessionDep, hub: HubDep
):
    return RFQService(session, hub).create_quotation(rfq_id, actor, **body.model_dump())

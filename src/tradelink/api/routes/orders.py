"""Order endpoints."""

from fastapi import APIRouter, Query

from tradelink.data.schema import OrderStatus
from tradelink.services import OrderService

from ..deps import AdminUser, CurrentUser, HubDep, SessionDep
from ..schemas import OrderResponse, OrderStatusRequest

router = APIRouter(prefix="/api/v1/orders", tags=["Orders"])


@router.get("", response_model=list[OrderResponse])
def list_orders(
    actor: CurrentUser,
    session: SessionDep,
    order_status: OrderStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Orders scoped to the caller: buyers and suppliers see their own, admins see all."""
    return OrderService(session).list_orders(actor, status=order_status, limit=limit, offset=offset)


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(order_id: int, actor: CurrentUser, session: SessionDep):
    return OrderService(session).get_order(order_id, actor)


@router.post("/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    order_id: int, body: OrderStatusRequest, actor: CurrentUser, session: SessionDep, hub: HubDep
):
    return OrderService(session, hub).update_status(order_id, body.status, actor)


@router.post("/{order_id}/mark-paid", response_model=OrderResponse)
def mark_order_paid(order_id: int, actor: AdminUser, session: SessionDep, hub: HubDep):
    """Record buyer payment and open the supplier's commission."""
    return OrderService(session, hub).mark_paid(order_id, actor)

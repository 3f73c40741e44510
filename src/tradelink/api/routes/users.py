"""User and supplier profile endpoints."""

from fastapi import APIRouter, Query, status

from tradelink.data.schema import UserRole
from tradelink.services import AccountService, PermissionDeniedError

from ..deps import AdminUser, CurrentUser, SessionDep, SupplierUser
from ..schemas import (
    SupplierProfileResponse,
    SupplierProfileUpdate,
    UserCreateRequest,
    UserResponse,
)

router = APIRouter(prefix="/api/v1/users", tags=["Users"])


@router.post("", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(body: UserCreateRequest, actor: AdminUser, session: SessionDep):
    """Register a buyer, supplier or admin account."""
    return AccountService(session).create_user(
        email=body.email,
        name=body.name,
        role=body.role,
        business_name=body.business_name,
        membership_tier=body.membership_tier,
    )


@router.get("", response_model=list[UserResponse])
def list_users(
    actor: AdminUser,
    session: SessionDep,
    role: UserRole | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return AccountService(session).list_users(role=role, limit=limit, offset=offset)


@router.get("/me", response_model=UserResponse)
def get_me(actor: CurrentUser, session: SessionDep):
    return AccountService(session).get_user(actor.user_id)


@router.get("/me/supplier-profile", response_model=SupplierProfileResponse)
def get_my_profile(actor: SupplierUser, session: SessionDep):
    return AccountService(session).get_supplier_profile(actor.user_id)


@router.patch("/me/supplier-profile", response_model=SupplierProfileResponse)
def update_my_profile(body: SupplierProfileUpdate, actor: SupplierUser, session: SessionDep):
    """Suppliers maintain their own business name and payout details."""
    if body.membership_tier is not None:
        raise PermissionDeniedError("Membership tier can only be changed by an admin")
    return AccountService(session).update_supplier_profile(
        actor.user_id, **body.model_dump(exclude_none=True)
    )


@router.get("/{user_id}", response_model=UserResponse)
def get_user(user_id: int, actor: CurrentUser, session: SessionDep):
    if not actor.is_admin and actor.user_id != user_id:
        raise PermissionDeniedError("Cannot view another user's account")
    return AccountService(session).get_user(user_id)


@router.get("/{user_id}/supplier-profile", response_model=SupplierProfileResponse)
def get_supplier_profile(user_id: int, actor: AdminUser, session: SessionDep):
    return AccountService(session).get_supplier_profile(user_id)


@router.patch("/{user_id}/supplier-profile", response_model=SupplierProfileResponse)
def update_supplier_profile(
    user_id: int, body: SupplierProfileUpdate, actor: AdminUser, session: SessionDep
):
    return AccountService(session).update_supplier_profile(
        user_id, **body.model_dump(exclude_none=True)
    )

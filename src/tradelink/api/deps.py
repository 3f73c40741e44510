"""FastAPI dependencies: database session, push hub, gateway and caller identity."""

from collections.abc import Iterator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from tradelink.data.database import Database
from tradelink.data.schema import UserRole
from tradelink.services.actor import Actor
from tradelink.services.errors import PermissionDeniedError
from tradelink.services.gateway import PaymentGateway
from tradelink.services.notifications import NotificationHub


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_session(database: Annotated[Database, Depends(get_database)]) -> Iterator[Session]:
    """One transaction per request: commit on success, roll back on error."""
    with database.session_scope() as session:
        yield session


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_evidence_dir(request: Request) -> str:
    return request.app.state.evidence_dir


def get_current_user(request: Request) -> Actor:
    """Caller identity placed on request.state by JWTAuthMiddleware."""
    user_id = getattr(request.state, "user_id", None)
    role = getattr(request.state, "role", None)
    if user_id is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(user_id=user_id, role=UserRole(role))


def require_roles(*roles: UserRole):
    """Dependency factory rejecting callers outside ``roles`` with 403."""
    allowed = {UserRole(role) for role in roles}

    def checker(actor: Annotated[Actor, Depends(get_current_user)]) -> Actor:
        if actor.role not in allowed:
            names = ", ".join(sorted(role.value for role in allowed))
            raise PermissionDeniedError(f"This action requires role: {names}")
        return actor

    return checker


SessionDep = Annotated[Session, Depends(get_session)]
HubDep = Annotated[NotificationHub, Depends(get_hub)]
GatewayDep = Annotated[PaymentGateway, Depends(get_gateway)]
EvidenceDirDep = Annotated[str, Depends(get_evidence_dir)]
CurrentUser = Annotated[Actor, Depends(get_current_user)]
BuyerUser = Annotated[Actor, Depends(require_roles(UserRole.BUYER))]
SupplierUser = Annotated[Actor, Depends(require_roles(UserRole.SUPPLIER))]
AdminUser = Annotated[Actor, Depends(require_roles(UserRole.ADMIN))]
BuyerOrAdmin = Annotated[Actor, Depends(require_roles(UserRole.BUYER, UserRole.ADMIN))]
SupplierOrAdmin = Annotated[Actor, Depends(require_roles(UserRole.SUPPLIER, UserRole.ADMIN))]

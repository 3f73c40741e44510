"""API route modules."""

from .commissions import router as commissions_router
from .conversations import router as conversations_router
from .credit import router as credit_router
from .disputes import router as disputes_router
from .health import router as health_router
from .notifications import router as notifications_router
from .orders import router as orders_router
from .payouts import router as payouts_router
from .quotations import router as quotations_router
from .refunds import router as refunds_router
from .rfqs import router as rfqs_router
from .users import router as users_router

__all__ = [
    "commissions_router",
    "conversations_router",
    "credit_router",
    "disputes_router",
    "health_router",
    "notifications_router",
    "orders_router",
    "payouts_router",
    "quotations_router",
    "refunds_router",
    "rfqs_router",
    "users_router",
]

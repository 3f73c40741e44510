"""Marketplace domain services."""

from .accounts import AccountService
from .actor import Actor
from .chat import ChatService
from .commission import CommissionCalculation, CommissionRates, CommissionService, clear_rates_cache
from .credit import CreditService, CreditStatus
from .disputes import DisputeService
from .errors import (
    ConflictError,
    InvalidTransitionError,
    MarketplaceError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    SupplierRestrictedError,
    ValidationError,
)
from .evidence import EvidenceService
from .gateway import (
    GatewayResult,
    HTTPPaymentGateway,
    PaymentGateway,
    SimulatedPaymentGateway,
    get_payment_gateway,
)
from .notifications import NotificationHub, NotificationService, WSEvent, WSEventType
from .orders import OrderService
from .payouts import PayoutService
from .refunds import RefundService
from .resolution import ResolutionDecision, ResolutionRecommendation, ResolutionService
from .rfq import RFQService
from .scheduler import CommissionJobService, CommissionScheduler

__all__ = [
    "Actor",
    # Errors
    "MarketplaceError",
    "NotFoundError",
    "PermissionDeniedError",
    "ValidationError",
    "ConflictError",
    "InvalidTransitionError",
    "SupplierRestrictedError",
    "PaymentGatewayError",
    # Services
    "AccountService",
    "NotificationService",
    "NotificationHub",
    "WSEvent",
    "WSEventType",
    "RFQService",
    "OrderService",
    "CommissionService",
    "CommissionRates",
    "CommissionCalculation",
    "clear_rates_cache",
    "CreditService",
    "CreditStatus",
    "CommissionJobService",
    "CommissionScheduler",
    "PaymentGateway",
    "GatewayResult",
    "SimulatedPaymentGateway",
    "HTTPPaymentGateway",
    "get_payment_gateway",
    "PayoutService",
    "DisputeService",
    "EvidenceService",
    "ResolutionService",
    "ResolutionDecision",
    "ResolutionRecommendation",
    "RefundService",
    "ChatService",
]

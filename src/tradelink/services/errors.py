"""Domain errors raised by marketplace services.

Each error carries the HTTP status the API renders it with, so route
handlers never translate errors themselves.
"""


class MarketplaceError(Exception):
    """Base class for marketplace domain errors."""

    status_code = 400
    default_code = "MARKETPLACE_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class NotFoundError(MarketplaceError):
    status_code = 404
    default_code = "NOT_FOUND"


class PermissionDeniedError(MarketplaceError):
    status_code = 403
    default_code = "PERMISSION_DENIED"


class ValidationError(MarketplaceError):
    status_code = 400
    default_code = "VALIDATION_ERROR"


class ConflictError(MarketplaceError):
    status_code = 409
    default_code = "CONFLICT"


class InvalidTransitionError(ConflictError):
    """Status change not allowed by a lifecycle's transition table."""

    default_code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str, entity: str = "status"):
        super().__init__(f"Cannot change {entity} from '{current}' to '{target}'")
        self.current = current
        self.target = target


class SupplierRestrictedError(MarketplaceError):
    """Supplier account is restricted for unpaid commission."""

    status_code = 403
    default_code = "SUPPLIER_RESTRICTED"


class PaymentGatewayError(MarketplaceError):
    status_code = 502
    default_code = "PAYMENT_GATEWAY_ERROR"

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable

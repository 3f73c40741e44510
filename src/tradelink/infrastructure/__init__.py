"""Logging, correlation and metrics for the marketplace."""

from .correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    get_correlation_id,
    get_or_create_correlation_id,
    reset_correlation_context,
    set_correlation_id,
)
from .logging_config import (
    bind_actor,
    bind_context,
    bind_correlation_id,
    bound_context,
    clear_context,
    configure_structlog,
    get_logger,
)
from .metrics import (
    commission_amount_total,
    disputes_total,
    health_check_status,
    notifications_sent_total,
    payouts_total,
    quotations_total,
    record_request,
    request_duration_seconds,
    requests_total,
    rfqs_created_total,
    set_health_status,
    websocket_connections_active,
    websocket_messages_total,
)

__all__ = [
    # Logging
    "get_logger",
    "bind_actor",
    "bind_context",
    "bound_context",
    "bind_correlation_id",
    "clear_context",
    "configure_structlog",
    # Correlation
    "CORRELATION_ID_HEADER",
    "generate_correlation_id",
    "get_correlation_id",
    "get_or_create_correlation_id",
    "set_correlation_id",
    "reset_correlation_context",
    # Metrics
    "requests_total",
    "request_duration_seconds",
    "websocket_connections_active",
    "websocket_messages_total",
    "rfqs_created_total",
    "quotations_total",
    "disputes_total",
    "commission_amount_total",
    "payouts_total",
    "notifications_sent_total",
    "health_check_status",
    "record_request",
    "set_health_status",
]

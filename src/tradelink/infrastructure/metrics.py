"""Prometheus metrics for the TradeLink marketplace.

Provides metrics collection for:
- API request rates and latencies
- WebSocket push connections
- Marketplace workflow events (RFQs, quotations, disputes, money movement)
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# =============================================================================
# Application Info
# =============================================================================

app_info = Info(
    "tradelink_app",
    "Application information",
)
app_info.info(
    {
        "version": "1.0.0",
        "service": "tradelink-marketplace",
    }
)

# =============================================================================
# Request Metrics
# =============================================================================

requests_total = Counter(
    "tradelink_requests_total",
    "Total number of requests",
    ["endpoint", "method", "status"],
)

request_duration_seconds = Histogram(
    "tradelink_request_duration_seconds",
    "Request duration in seconds",
    ["endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# =============================================================================
# WebSocket Metrics
# =============================================================================

websocket_connections_active = Gauge(
    "tradelink_websocket_connections_active",
    "Number of active WebSocket connections",
)

websocket_messages_total = Counter(
    "tradelink_websocket_messages_total",
    "Total WebSocket messages",
    ["direction"],  # sent/received
)

# =============================================================================
# Marketplace Workflow Metrics
# =============================================================================

rfqs_created_total = Counter(
    "tradelink_rfqs_created_total",
    "Total RFQs created",
)

quotations_total = Counter(
    "tradelink_quotations_total",
    "Quotation lifecycle events",
    ["status"],
)

disputes_total = Counter(
    "tradelink_disputes_total",
    "Dispute lifecycle events",
    ["event"],  # created/escalated/resolved/reopened/closed
)

commission_amount_total = Counter(
    "tradelink_commission_amount_total",
    "Total commission amount applied to paid orders",
)

payouts_total = Counter(
    "tradelink_payouts_total",
    "Payout processing outcomes",
    ["status"],
)

notifications_sent_total = Counter(
    "tradelink_notifications_sent_total",
    "Notifications created or pushed",
    ["channel"],  # stored/push
)

# =============================================================================
# Health Check Metrics
# =============================================================================

health_check_status = Gauge(
    "tradelink_health_check_status",
    "Health check status (1=healthy, 0=unhealthy)",
    ["component"],
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_request(endpoint: str, method: str, status: int, duration: float) -> None:
    """Record a request with all relevant metrics.

    Args:
        endpoint: The API endpoint
        method: HTTP method
        status: HTTP status code
        duration: Request duration in seconds
    """
    requests_total.labels(endpoint=endpoint, method=method, status=str(status)).inc()
    request_duration_seconds.labels(endpoint=endpoint).observe(duration)


def set_health_status(component: str, healthy: bool) -> None:
    """Set health check status for a component."""
    health_check_status.labels(component=component).set(1 if healthy else 0)

"""FastAPI application for the TradeLink B2B marketplace."""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tradelink import __version__
from tradelink.data.database import Database, get_database
from tradelink.infrastructure import (
    CORRELATION_ID_HEADER,
    bind_correlation_id,
    clear_context,
    get_correlation_id,
    get_logger,
    get_or_create_correlation_id,
    record_request,
    set_correlation_id,
)
from tradelink.middleware import JWTAuthMiddleware, RateLimitMiddleware
from tradelink.models import get_settings
from tradelink.services import (
    CommissionScheduler,
    MarketplaceError,
    NotificationHub,
    PaymentGateway,
    get_payment_gateway,
)

from .routes import (
    commissions_router,
    conversations_router,
    credit_router,
    disputes_router,
    health_router,
    notifications_router,
    orders_router,
    payouts_router,
    quotations_router,
    refunds_router,
    rfqs_router,
    users_router,
)
from .schemas import ErrorDetail, ErrorResponse
from .websocket import router as websocket_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("api_startup", message="Starting TradeLink marketplace API...")
    settings = get_settings()

    app.state.database.create_tables()
    Path(app.state.evidence_dir).mkdir(parents=True, exist_ok=True)

    if settings.scheduler_enabled:
        scheduler = CommissionScheduler(
            app.state.database, app.state.hub, interval_hours=settings.scheduler_interval_hours
        )
        scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("commission_scheduler_disabled")

    yield

    # Shutdown
    if app.state.scheduler is not None:
        await app.state.scheduler.stop()
        app.state.scheduler = None
    app.state.gateway.close()
    logger.info("api_shutdown", message="Shutting down TradeLink marketplace API...")


def create_app(
    database: Database | None = None,
    hub: NotificationHub | None = None,
    gateway: PaymentGateway | None = None,
    evidence_dir: str | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        database: Store to serve from; defaults to the configured database.
        hub: WebSocket hub for push events; a fresh one by default.
        gateway: Payment gateway for payouts and refunds; built from settings by default.
        evidence_dir: Directory for dispute evidence files.
    """
    settings = get_settings()

    app = FastAPI(
        title="TradeLink Marketplace API",
        description="""
## B2B Marketplace Backend

REST and WebSocket API for the TradeLink supplier marketplace.

### Features
- **RFQs & Quotations**: Buyers publish requests, suppliers quote, buyers accept
- **Orders & Commissions**: Platform commission per order with tiered rates
- **Supplier Credit**: Credit limits, restriction and commission payments
- **Payouts & Refunds**: Supplier earnings through the payment gateway
- **Disputes**: Evidence, mediation and rule-based resolution
- **Chat & Notifications**: Conversations with real-time WebSocket push

### Authentication
Bearer JWT with `sub` (user id) and `role` claims when `TRADELINK_AUTH_ENABLED=true`.

### Rate Limits
- 120 requests per minute per user (or IP)
- 3000 requests per hour per user (or IP)
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.state.database = database or get_database()
    app.state.hub = hub or NotificationHub()
    app.state.gateway = gateway or get_payment_gateway(settings)
    app.state.evidence_dir = evidence_dir or settings.evidence_dir
    app.state.scheduler = None

    # Rate limiting runs inside auth so it can key on the caller
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(JWTAuthMiddleware)

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        """Add correlation ID to all requests."""
        correlation_id = request.headers.get(CORRELATION_ID_HEADER)
        if not correlation_id:
            correlation_id = get_or_create_correlation_id()
        else:
            set_correlation_id(correlation_id)
        clear_context()
        bind_correlation_id(correlation_id)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        response.headers[CORRELATION_ID_HEADER] = correlation_id

        # Record metrics (skip /metrics and /health endpoints)
        skip_metrics = request.url.path.startswith(("/metrics", "/health"))
        if not skip_metrics:
            record_request(
                endpoint=request.url.path,
                method=request.method,
                status=response.status_code,
                duration=duration,
            )
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )

        return response

    # CORS sits outermost so preflight requests skip auth
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health_router)
    app.include_router(users_router)
    app.include_router(rfqs_router)
    app.include_router(quotations_router)
    app.include_router(orders_router)
    app.include_router(commissions_router)
    app.include_router(credit_router)
    app.include_router(payouts_router)
    app.include_router(disputes_router)
    app.include_router(refunds_router)
    app.include_router(conversations_router)
    app.include_router(notifications_router)
    app.include_router(websocket_router)

    # Prometheus metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
        """Render domain errors with the status they carry."""
        logger.warning(
            "request_rejected",
            method=request.method,
            path=request.url.path,
            code=exc.code,
            status=exc.status_code,
            error=exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=exc.message,
                details=[ErrorDetail(code=exc.code, message=exc.message)],
                request_id=get_correlation_id(),
                timestamp=datetime.now(),
            ).model_dump(mode="json"),
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            "unhandled_exception",
            method=request.method,
            path=request.url.path,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal Server Error",
                details=[ErrorDetail(code="INTERNAL_ERROR", message=str(exc))],
                request_id=get_correlation_id(),
                timestamp=datetime.now(),
            ).model_dump(mode="json"),
        )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint with API info."""
        return {
            "name": "TradeLink Marketplace API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
            "status": "running",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tradelink.api.main:app", host="0.0.0.0", port=8000, reload=True)

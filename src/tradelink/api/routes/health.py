"""Health check endpoints."""

import time
from datetime import datetime

from fastapi import APIRouter, Request

from tradelink import __version__
from tradelink.infrastructure.metrics import set_health_status

from ..schemas import HealthResponse, ReadinessResponse, ServiceHealth

router = APIRouter(tags=["Health"])


def _check_database(request: Request) -> ServiceHealth:
    start = time.time()
    try:
        request.app.state.database.ping()
    except Exception as e:
        set_health_status("database", False)
        return ServiceHealth(name="database", status="unhealthy", message=str(e))
    set_health_status("database", True)
    return ServiceHealth(
        name="database", status="healthy", latency_ms=round((time.time() - start) * 1000, 2)
    )


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Returns the overall health status of the service and its dependencies.
    """
    services = [_check_database(request)]

    scheduler = request.app.state.scheduler
    services.append(
        ServiceHealth(
            name="commission_scheduler",
            status="healthy" if scheduler is not None and scheduler.running else "skipped",
            message="Daily job running" if scheduler is not None else "Scheduler disabled",
        )
    )

    hub = request.app.state.hub
    services.append(
        ServiceHealth(
            name="websocket_hub",
            status="healthy",
            message=f"{len(hub.active_connections)} users connected",
        )
    )

    overall_status = "healthy"
    if any(s.status == "unhealthy" for s in services):
        overall_status = "unhealthy"

    return HealthResponse(
        status=overall_status, version=__version__, timestamp=datetime.now(), services=services
    )


@router.get("/ready", response_model=ReadinessResponse)
def readiness_check(request: Request) -> ReadinessResponse:
    """
    Readiness check endpoint.

    Used by Kubernetes/load balancers for traffic routing.
    """
    checks = {"database": _check_database(request).status == "healthy"}

    try:
        from tradelink.models import get_settings

        get_settings()
        checks["config"] = True
    except Exception:
        checks["config"] = False

    return ReadinessResponse(ready=all(checks.values()), checks=checks)


@router.get("/live")
def liveness_check() -> dict:
    """Simple check to verify the service is running."""
    return {"status": "alive", "timestamp": datetime.now().isoformat()}

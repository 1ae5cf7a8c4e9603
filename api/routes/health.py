"""Health check and metrics endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel

from core import __version__
from core.observability import get_metrics
from storage import check_db


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Health check endpoint."""
    storage_up = check_db(request.app.state.settings.db_path)
    scheduler = request.app.state.scheduler
    return HealthResponse(
        status="healthy" if storage_up else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services={
            "api": "up",
            "storage": "up" if storage_up else "down",
            "scheduler": "running" if scheduler.started else ("disabled" if not scheduler.enabled else "stopped"),
        }
    )


@router.get("/ready")
async def readiness_check(request: Request, response: Response) -> Dict[str, str]:
    """Readiness probe: the database must be reachable."""
    if not check_db(request.app.state.settings.db_path):
        response.status_code = 503
        return {"status": "not ready", "reason": "storage unavailable"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """Liveness probe for Kubernetes."""
    return {"status": "alive"}


@router.get("/metrics")
async def metrics_summary() -> Dict[str, Any]:
    """In-process counters and timings."""
    return get_metrics().get_summary()

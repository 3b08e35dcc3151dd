"""
Health Check Endpoints

Liveness, readiness and Prometheus metrics for orchestration systems.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from src.config import get_settings
from src.domain.models import utcnow
from src.gateway.fallback import RecordStoreGateway
from src.serving.api.dependencies import get_gateway
from src.serving.cache import get_redis

settings = get_settings()
router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    environment: str
    timestamp: datetime
    checks: Dict[str, Any]


@router.get("/health", response_model=HealthResponse)
async def health_check(gateway: RecordStoreGateway = Depends(get_gateway)) -> HealthResponse:
    """
    Checks both record sources and the metrics cache.

    healthy: primary up. degraded: reads are served by the mirror or
    uncached. unhealthy: no record source answers.
    """
    checks: Dict[str, Any] = await gateway.health()

    redis = get_redis()
    if redis is None:
        checks["redis"] = {"status": "disabled"}
    else:
        try:
            await redis.ping()
            checks["redis"] = {"status": "healthy"}
        except Exception as e:
            checks["redis"] = {"status": "unhealthy", "error": str(e)}

    sources = [checks[name] for name in ("primary", "secondary") if name in checks]
    if checks["primary"]["status"] == "healthy":
        overall = "healthy" if checks["redis"]["status"] != "unhealthy" else "degraded"
    elif any(source["status"] == "healthy" for source in sources):
        overall = "degraded"
    else:
        overall = "unhealthy"

    return HealthResponse(
        status=overall,
        version=settings.version,
        environment=settings.app_env,
        timestamp=utcnow(),
        checks=checks,
    )


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """Returns 200 while the process is running."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(
    response: Response,
    gateway: RecordStoreGateway = Depends(get_gateway),
) -> Dict[str, str]:
    """Ready when at least one record source answers."""
    report = await gateway.health()
    if any(check["status"] == "healthy" for check in report.values()):
        return {"status": "ready"}
    response.status_code = 503
    return {"status": "not_ready", "reason": "no_record_source"}


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

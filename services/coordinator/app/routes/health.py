"""
Health check and monitoring endpoints
"""
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.obs.logging import get_logger
from app.services.idempotency import IdempotencyCoordinator, get_coordinator

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

_started_at = time.time()


@router.get("/health")
async def health_check():
    """Liveness probe: the process is up."""
    return {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_seconds": round(time.time() - _started_at, 1),
        "environment": settings.ENVIRONMENT,
    }


@router.get("/ready")
async def readiness_check(request: Request, coordinator: IdempotencyCoordinator = Depends(get_coordinator)):
    """Readiness probe: not shutting down and the idempotency store answers."""
    start = time.time()
    if getattr(request.app.state, "draining", False):
        return JSONResponse(
            status_code=503,
            content={
                "ready": False,
                "service": settings.SERVICE_NAME,
                "reason": "shutting_down",
                "duration_ms": round((time.time() - start) * 1000, 2),
            },
        )

    store_ready = coordinator.store.ping()
    body = {
        "ready": store_ready,
        "service": settings.SERVICE_NAME,
        "components": {
            "idempotency_store": store_ready,
        },
        "store": settings.IDEMPOTENCY_STORE,
        "duration_ms": round((time.time() - start) * 1000, 2),
    }
    if not store_ready:
        body["reason"] = "store_unavailable"
        logger.warning("Readiness check failed: idempotency store unavailable")
        return JSONResponse(status_code=503, content=body)
    return body

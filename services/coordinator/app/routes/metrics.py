"""
Prometheus metrics endpoint.
"""
from fastapi import APIRouter, Response
from app.obs.metrics import metrics

router = APIRouter(tags=["Observability"])


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Exposes HTTP, idempotency and rate limit metrics in Prometheus format. No authentication, no PII.",
    response_class=Response
)
async def get_metrics():
    """Return Prometheus-formatted metrics."""
    return metrics.get_metrics_response()

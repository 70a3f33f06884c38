"""
Prometheus metrics for the Artisan coordinator service.
Provides metrics for HTTP requests, idempotency claims and housekeeping.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response
from app.config import settings

OTHER_OPERATION = "other"


# HTTP Request Metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['route', 'method', 'status']
)

http_request_duration_ms = Histogram(
    'http_request_duration_ms',
    'HTTP request duration in milliseconds',
    ['route', 'method'],
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)
)

# Idempotency Metrics
idempotency_claims_total = Counter(
    'idempotency_claims_total',
    'Total number of operations that won their claim',
    ['operation']
)

idempotency_duplicates_total = Counter(
    'idempotency_duplicates_total',
    'Total number of operations rejected as duplicates',
    ['operation']
)

idempotency_releases_total = Counter(
    'idempotency_releases_total',
    'Total number of claims released before expiry',
    ['operation', 'reason']
)

idempotency_store_errors_total = Counter(
    'idempotency_store_errors_total',
    'Total number of idempotency store failures',
    ['stage']
)

idempotency_swept_total = Counter(
    'idempotency_swept_total',
    'Total number of expired claims removed by the sweeper'
)

rate_limit_hits_total = Counter(
    'rate_limit_hits_total',
    'Total number of requests rejected by the rate limiter',
    ['tier']
)


class MetricsCollector:
    """Centralized metrics collection."""

    def __init__(self, known_operations=None):
        if known_operations is None:
            known_operations = settings.IDEMPOTENCY_METRIC_OPERATIONS
        self.known_operations = frozenset(known_operations)

    def record_http_request(self, route: str, method: str, status_code: int, duration_ms: float):
        """Record HTTP request metrics."""
        route = self._normalize_route(route)
        http_requests_total.labels(route=route, method=method, status=str(status_code)).inc()
        http_request_duration_ms.labels(route=route, method=method).observe(duration_ms)

    def record_claim(self, operation: str):
        idempotency_claims_total.labels(operation=self._operation_label(operation)).inc()

    def record_duplicate(self, operation: str):
        idempotency_duplicates_total.labels(operation=self._operation_label(operation)).inc()

    def record_release(self, operation: str, reason: str):
        idempotency_releases_total.labels(operation=self._operation_label(operation), reason=reason).inc()

    def record_store_error(self, stage: str):
        idempotency_store_errors_total.labels(stage=stage).inc()

    def record_swept(self, count: int):
        if count > 0:
            idempotency_swept_total.inc(count)

    def record_rate_limit_hit(self, tier: str):
        rate_limit_hits_total.labels(tier=tier).inc()

    def _operation_label(self, operation: str) -> str:
        """Operation names come from clients; only configured ones get their own series."""
        return operation if operation in self.known_operations else OTHER_OPERATION

    def _normalize_route(self, route: str) -> str:
        """Collapse operation names so label cardinality stays bounded."""
        prefix = "/api/v1/operations/"
        if route.startswith(prefix):
            return prefix + "{operation_name}"
        return route

    def get_metrics_response(self) -> Response:
        """Get Prometheus metrics response."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )


# Global metrics collector instance
metrics = MetricsCollector()


def record_http_request(route: str, method: str, status_code: int, duration_ms: float):
    """Record HTTP request metrics."""
    metrics.record_http_request(route, method, status_code, duration_ms)

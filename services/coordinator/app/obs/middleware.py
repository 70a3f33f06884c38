"""
Observability middleware for FastAPI.
Provides request IDs, request logging, and metrics collection.
"""
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from app.obs.logging import get_logger, log_request, log_error, extract_trace_id
from app.obs.tracing import add_span_attributes, add_span_error
from app.obs.metrics import record_http_request

logger = get_logger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Middleware for request observability (logging, tracing, metrics)."""

    def __init__(self, app, exclude_paths: list = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ['/metrics', '/docs', '/openapi.json']

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with observability."""
        start_time = time.time()

        # Every response carries a request id, even for excluded paths
        trace_id = extract_trace_id(request)
        request.state.trace_id = trace_id
        request.state.user_id = request.headers.get("X-User-Id")

        if any(request.url.path.startswith(path) for path in self.exclude_paths):
            response = await call_next(request)
            response.headers["X-Request-Id"] = trace_id
            return response

        logger.debug(
            "req:start",
            extra={
                'route': request.url.path,
                'method': request.method,
                'trace_id': trace_id,
            }
        )
        add_span_attributes({"http.request_id": trace_id})

        try:
            response = await call_next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            add_span_error(e, {"error.route": request.url.path})
            record_http_request(request.url.path, request.method, 500, duration_ms)
            log_error(
                logger=logger,
                error=e,
                trace_id=trace_id,
                user_id=request.state.user_id,
                route=request.url.path,
                method=request.method,
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        response.headers["X-Request-Id"] = trace_id
        record_http_request(request.url.path, request.method, response.status_code, duration_ms)
        log_request(
            logger=logger,
            request=request,
            status_code=response.status_code,
            latency_ms=duration_ms,
            trace_id=trace_id,
            user_id=request.state.user_id,
        )
        return response

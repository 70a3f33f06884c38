"""
RFC-7807 compliant error handling for the Artisan coordinator service.
Provides structured error responses with trace correlation.
"""
from typing import Any, Dict, Optional
from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.core.idempotency import DuplicateOperation, StoreUnavailable
from app.obs.logging import get_logger, log_error
from app.obs.tracing import get_current_trace_id

logger = get_logger(__name__)


class ProblemDetail:
    """RFC-7807 Problem Details for HTTP APIs."""

    def __init__(
        self,
        type: str,
        title: str,
        detail: str,
        status: int,
        instance: Optional[str] = None,
        trace_id: Optional[str] = None,
        **kwargs
    ):
        self.type = type
        self.title = title
        self.detail = detail
        self.status = status
        self.instance = instance
        self.trace_id = trace_id
        self.extensions = kwargs

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        result = {
            "type": self.type,
            "title": self.title,
            "detail": self.detail,
            "status": self.status,
        }

        if self.instance:
            result["instance"] = self.instance

        if self.trace_id:
            result["trace_id"] = self.trace_id

        result.update(self.extensions)

        return result


def create_problem_detail(
    error: Exception,
    request: Request,
    status_code: int = 500,
    error_type: str = "about:blank",
    title: str = "Internal Server Error",
    detail: Optional[str] = None,
    **extensions
) -> ProblemDetail:
    """Create a ProblemDetail from an exception."""
    trace_id = getattr(request.state, 'trace_id', None) or get_current_trace_id()

    if detail is None:
        detail = str(error)

    return ProblemDetail(
        type=error_type,
        title=title,
        detail=detail,
        status=status_code,
        instance=request.url.path,
        trace_id=trace_id,
        **extensions
    )


def _respond(problem: ProblemDetail, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=problem.status,
        content=jsonable_encoder(problem.to_dict()),
        headers=headers,
    )


async def duplicate_operation_handler(request: Request, exc: DuplicateOperation) -> JSONResponse:
    """A duplicate submission means the first one is still being processed."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=409,
        error_type="https://tools.ietf.org/html/rfc7231#section-6.5.8",
        title="Operation still processing",
        detail=f"Operation '{exc.operation_name}' is already in progress, do not resubmit.",
        operation=exc.operation_name,
        first_seen_at=exc.created_at.isoformat(),
    )
    return _respond(problem)


async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    """The claim could not be confirmed, so the operation was not attempted."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=503,
        error_type="https://tools.ietf.org/html/rfc7231#section-6.6.4",
        title="Service Unavailable",
        detail="Could not guarantee exactly-once processing, please retry shortly.",
    )

    log_error(
        logger=logger,
        error=exc,
        trace_id=problem.trace_id,
        user_id=getattr(request.state, 'user_id', None),
        route=request.url.path,
        method=request.method,
        status=503,
    )

    return _respond(problem, headers={"Retry-After": "1"})


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with RFC-7807 format."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=exc.status_code,
        error_type="https://tools.ietf.org/html/rfc7231#section-6.5",
        title="HTTP Error",
        detail=exc.detail
    )

    if exc.status_code >= 500:
        log_error(
            logger=logger,
            error=exc,
            trace_id=problem.trace_id,
            route=request.url.path,
            method=request.method,
            status=exc.status_code,
        )

    return _respond(problem, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with RFC-7807 format."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=422,
        error_type="https://tools.ietf.org/html/rfc4918#section-11.2",
        title="Validation Error",
        detail="Request validation failed",
        validation_errors=exc.errors(),
    )

    return _respond(problem)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle general exceptions with RFC-7807 format."""
    problem = create_problem_detail(
        error=exc,
        request=request,
        status_code=500,
        error_type="https://tools.ietf.org/html/rfc7231#section-6.6.1",
        title="Internal Server Error",
        detail="An unexpected error occurred"
    )

    log_error(
        logger=logger,
        error=exc,
        trace_id=problem.trace_id,
        user_id=getattr(request.state, 'user_id', None),
        route=request.url.path,
        method=request.method,
        status=500,
    )

    return _respond(problem)


def register_error_handlers(app):
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(DuplicateOperation, duplicate_operation_handler)
    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    # Catch-all
    app.add_exception_handler(Exception, general_exception_handler)

    return app

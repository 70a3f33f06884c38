from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import health, metrics, operations

# Import centralized configuration
from app.config import settings

# Import observability components
from app.obs.logging import setup_logging, get_logger
from app.obs.tracing import setup_tracing, instrument_fastapi
from app.obs.middleware import ObservabilityMiddleware
from app.obs.errors import register_error_handlers
from app.obs.sentry import setup_sentry
from app.middleware.rate_limiter import RateLimitMiddleware
from app.middleware.security_headers import add_security_headers
from app.services.idempotency import get_coordinator
from app.services.idempotency_sweeper import IdempotencySweeper

# Setup observability
setup_logging()
setup_tracing()
setup_sentry()

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the sweeper for the lifetime of the process."""
    app.state.draining = False
    coordinator = get_coordinator()
    sweeper = IdempotencySweeper(coordinator.store, on_swept=coordinator.record_swept)
    sweeper.start()
    app.state.sweeper = sweeper
    logger.info(f"{settings.SERVICE_NAME} started", extra={"service": settings.SERVICE_NAME})
    try:
        yield
    finally:
        # /ready reports not-ready from here on
        app.state.draining = True
        await sweeper.stop()
        logger.info(f"{settings.SERVICE_NAME} stopped")


app = FastAPI(title="Artisan Coordinator API", lifespan=lifespan)

# Instrument FastAPI with OpenTelemetry
instrument_fastapi(app)

# Register error handlers
register_error_handlers(app)

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "Retry-After"],
)

# Observability middleware
app.add_middleware(ObservabilityMiddleware)

# Rate limiting middleware (rejects before any work)
app.add_middleware(RateLimitMiddleware)

# Security headers (outermost, so 429 responses carry them too)
add_security_headers(app)

# Include routers
app.include_router(health.router)  # Health checks first
app.include_router(metrics.router)  # Prometheus metrics
app.include_router(operations.router)  # Operation reservations

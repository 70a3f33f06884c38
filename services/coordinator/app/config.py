"""
Centralized configuration management for the Artisan coordinator service.
Loads and validates all environment variables.
"""
import os
from typing import List


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        # Environment
        self.ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
        self.SERVICE_NAME = os.getenv("SERVICE_NAME", "artisan-coordinator")

        # Database (only used by the "database" idempotency store)
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./artisan_dev.db")

        # Redis Configuration
        self.REDIS_URL = os.getenv("REDIS_URL") or os.getenv("UPSTASH_REDIS_URL")

        # Idempotency Configuration
        # memory | redis | database
        self.IDEMPOTENCY_STORE = os.getenv("IDEMPOTENCY_STORE", "memory").lower()
        self.IDEMPOTENCY_TTL_MS = int(os.getenv("IDEMPOTENCY_TTL_MS", str(15 * 60 * 1000)))
        # retain | clear
        self.IDEMPOTENCY_SUCCESS_POLICY = os.getenv("IDEMPOTENCY_SUCCESS_POLICY", "retain").lower()
        self.IDEMPOTENCY_SWEEP_INTERVAL_SECONDS = float(os.getenv("IDEMPOTENCY_SWEEP_INTERVAL_SECONDS", "300"))
        self.IDEMPOTENCY_KEY_PREFIX = os.getenv("IDEMPOTENCY_KEY_PREFIX", "idempotency")
        # Operations reported by name in metrics; any other name is labelled "other"
        metric_operations_str = os.getenv("IDEMPOTENCY_METRIC_OPERATIONS", "create-post,start-checkout")
        self.IDEMPOTENCY_METRIC_OPERATIONS: List[str] = [
            name.strip() for name in metric_operations_str.split(",") if name.strip()
        ]

        # Rate Limiting Configuration
        self.ENABLE_RATE_LIMITING = _flag("ENABLE_RATE_LIMITING", "true")
        self.RATE_LIMIT_GLOBAL = os.getenv("RATE_LIMIT_GLOBAL", "200/minute")
        self.RATE_LIMIT_WRITE = os.getenv("RATE_LIMIT_WRITE", "60/minute")
        self.RATE_LIMIT_SENSITIVE = os.getenv("RATE_LIMIT_SENSITIVE", "10/minute")
        self.RATE_LIMIT_AI = os.getenv("RATE_LIMIT_AI", "20/hour")

        # Celery Configuration
        self.ENABLE_CELERY_BEAT = _flag("ENABLE_CELERY_BEAT", "false")

        # CORS Configuration
        allowed_origins_str = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173,http://localhost:3000")
        self.ALLOWED_ORIGINS: List[str] = [
            origin.strip() for origin in allowed_origins_str.split(",") if origin.strip()
        ]

        # Sentry Error Tracking
        self.SENTRY_DSN = os.getenv("SENTRY_DSN", "")
        self.SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

        # Observability Configuration
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        self.OBS_REDACT_PII = _flag("OBS_REDACT_PII", "true")
        self.OTEL_EXPORTER_OTLP_ENDPOINT = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "")
        self.ENABLE_TRACING = _flag("ENABLE_TRACING", "false")

        self._validate()

    def _validate(self):
        """Reject settings the coordinator cannot run with."""
        if self.IDEMPOTENCY_STORE not in ("memory", "redis", "database"):
            raise ValueError(f"Unknown IDEMPOTENCY_STORE: {self.IDEMPOTENCY_STORE}")
        if self.IDEMPOTENCY_STORE == "redis" and not self.REDIS_URL:
            raise ValueError("REDIS_URL is required when IDEMPOTENCY_STORE=redis")
        if self.IDEMPOTENCY_TTL_MS <= 0:
            raise ValueError("IDEMPOTENCY_TTL_MS must be positive")
        if self.IDEMPOTENCY_SUCCESS_POLICY not in ("retain", "clear"):
            raise ValueError(f"Unknown IDEMPOTENCY_SUCCESS_POLICY: {self.IDEMPOTENCY_SUCCESS_POLICY}")
        if self.IDEMPOTENCY_SWEEP_INTERVAL_SECONDS <= 0:
            raise ValueError("IDEMPOTENCY_SWEEP_INTERVAL_SECONDS must be positive")

    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


# Global settings instance
settings = Settings()

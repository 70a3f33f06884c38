"""
Structured logging configuration for the Artisan coordinator service.
Provides JSON-formatted logs with correlation IDs and PII redaction.
"""
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Optional
from fastapi import Request
from app.config import settings


class PIIRedactor:
    """Redacts PII from log messages when enabled."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        if enabled:
            # Phone number patterns (various formats)
            self.phone_patterns = [
                r'\b\d{3}[-.]?\d{3}[-.]?\d{4}\b',  # 123-456-7890
                r'\(\d{3}\)\s*\d{3}[-.]?\d{4}',    # (123) 456-7890
                r'\+\d{1,3}[-.\s]?\d{3,4}[-.\s]?\d{3,4}[-.\s]?\d{3,4}',  # International
            ]

            # Email pattern
            self.email_pattern = r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b'

            # Compile patterns
            self.compiled_patterns = [
                re.compile(pattern) for pattern in self.phone_patterns
            ]
            self.email_pattern_compiled = re.compile(self.email_pattern)

    def redact(self, message: str) -> str:
        """Redact PII from a log message."""
        if not self.enabled:
            return message

        for pattern in self.compiled_patterns:
            message = pattern.sub('[REDACTED_PHONE]', message)

        return self.email_pattern_compiled.sub('[REDACTED_EMAIL]', message)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging with PII redaction."""

    optional_fields = [
        'route', 'method', 'status', 'latency_ms', 'trace_id',
        'user_id', 'ip', 'owner_id', 'operation', 'dedup_key',
        'outcome', 'first_seen_at', 'swept', 'task_name', 'error_type',
    ]

    def __init__(self, redact_pii: bool = True):
        super().__init__()
        self.redactor = PIIRedactor(redact_pii)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with structured fields."""
        log_entry = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": getattr(record, 'service', settings.SERVICE_NAME),
            "message": self.redactor.redact(record.getMessage()),
            "logger": record.name,
        }

        for field in self.optional_fields:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["error_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            log_entry["stack_trace"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging():
    """Configure structured logging for the application."""
    log_level = getattr(settings, 'LOG_LEVEL', 'INFO').upper()
    redact_pii = getattr(settings, 'OBS_REDACT_PII', True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(StructuredFormatter(redact_pii))
    root_logger.addHandler(console_handler)

    # Configure specific loggers
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


def log_request(
    logger: logging.Logger,
    request: Request,
    status_code: int,
    latency_ms: float,
    trace_id: str,
    user_id: Optional[str] = None,
    **kwargs
):
    """Log a request with structured fields."""
    extra = {
        'route': request.url.path,
        'method': request.method,
        'status': status_code,
        'latency_ms': round(latency_ms, 2),
        'trace_id': trace_id,
        'ip': request.client.host if request.client else None,
    }

    if user_id:
        extra['user_id'] = user_id

    extra.update(kwargs)

    # Choose log level based on status code
    if status_code >= 500:
        logger.error("req:end", extra=extra)
    elif status_code >= 400:
        logger.warning("req:end", extra=extra)
    else:
        logger.info("req:end", extra=extra)


def log_error(
    logger: logging.Logger,
    error: Exception,
    trace_id: Optional[str],
    user_id: Optional[str] = None,
    **kwargs
):
    """Log an error with structured fields and stack trace."""
    extra = {
        'trace_id': trace_id,
        'error_type': type(error).__name__,
    }

    if user_id:
        extra['user_id'] = user_id

    extra.update(kwargs)

    logger.error(f"Error occurred: {str(error)}", exc_info=error, extra=extra)


def generate_trace_id() -> str:
    """Generate a new trace ID."""
    return str(uuid.uuid4())


def extract_trace_id(request: Request) -> str:
    """Extract trace ID from request headers or generate new one."""
    request_id = request.headers.get("X-Request-Id")
    if request_id:
        return request_id

    # traceparent format: 00-<trace_id>-<span_id>-<flags>
    traceparent = request.headers.get("traceparent")
    if traceparent:
        parts = traceparent.split("-")
        if len(parts) >= 2:
            return parts[1]

    return generate_trace_id()

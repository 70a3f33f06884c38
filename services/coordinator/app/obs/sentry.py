"""
Sentry error tracking integration.
"""
import re

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.celery import CeleryIntegration
from app.config import settings
from app.core.idempotency import DuplicateOperation
from app.obs.logging import get_logger

logger = get_logger(__name__)


def setup_sentry():
    """Initialize Sentry SDK when a DSN is configured."""
    if not settings.SENTRY_DSN:
        logger.info("SENTRY_DSN not configured, skipping Sentry initialization")
        return

    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            integrations=[
                FastApiIntegration(
                    transaction_style="endpoint",
                    failed_request_status_codes={500, 501, 502, 503, 504}
                ),
                SqlalchemyIntegration(),
                RedisIntegration(),
                CeleryIntegration()
            ],
            traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
            before_send=before_send_event,
            release=f"{settings.SERVICE_NAME}@{settings.ENVIRONMENT}",
            send_default_pii=False,
            attach_stacktrace=True,
            max_breadcrumbs=50
        )
        logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
    except Exception as e:
        logger.error(f"Failed to initialize Sentry: {str(e)}")


def before_send_event(event, hint):
    """
    Filter/modify events before sending to Sentry.

    - Drop duplicate-operation rejections, they are expected client behaviour
    - Redact PII from exception messages
    """
    exc_info = hint.get("exc_info") if hint else None
    if exc_info and isinstance(exc_info[1], DuplicateOperation):
        return None

    if "exception" in event:
        for exception in event["exception"].get("values", []):
            if exception.get("value"):
                exception["value"] = redact_pii(exception["value"])

    return event


def redact_pii(text: str) -> str:
    """Replace phone numbers, emails and API keys in error messages."""
    text = re.sub(r'\b\d{3}[-.]?\d{3}[-.]?\d{4}\b', '[PHONE_REDACTED]', text)
    text = re.sub(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b', '[EMAIL_REDACTED]', text)
    text = re.sub(r'(sk_|pk_|sk-|pk-|api_key=)[A-Za-z0-9_-]+', r'\1[REDACTED]', text)
    return text

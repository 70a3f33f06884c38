"""
Celery configuration for coordinator background tasks
"""
from celery import Celery
from app.config import settings

# Create Celery instance
celery_app = Celery(
    "artisan",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=[
        "app.tasks.cleanup_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_default_queue="default",

    # Task execution
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,

    # Result backend
    result_expires=3600,  # 1 hour
)

if settings.ENABLE_CELERY_BEAT:
    celery_app.conf.beat_schedule = {
        "sweep-idempotency-claims": {
            "task": "app.tasks.cleanup_tasks.sweep_idempotency_claims",
            "schedule": settings.IDEMPOTENCY_SWEEP_INTERVAL_SECONDS,
        },
    }

"""
Cleanup and maintenance background tasks
"""
from app.celery_app import celery_app
from app.obs.logging import get_logger
from app.services.idempotency import get_coordinator
from app.services.idempotency_sweeper import IdempotencySweeper

logger = get_logger(__name__)


@celery_app.task(name="app.tasks.cleanup_tasks.sweep_idempotency_claims")
def sweep_idempotency_claims():
    """
    Remove expired idempotency claims from the shared store.

    Only the database store accumulates expired rows; Redis expires keys on
    its own and the memory store is swept by the API process itself.
    """
    coordinator = get_coordinator()
    swept = IdempotencySweeper(coordinator.store, on_swept=coordinator.record_swept).run_once()
    logger.info("Idempotency sweep task completed", extra={"task_name": "sweep_idempotency_claims", "swept": swept})
    return {"success": True, "swept": swept}

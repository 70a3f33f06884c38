"""
Background housekeeping for idempotency claims.

The sweeper only bounds memory growth: every store already treats expired
claims as absent on read, and sweep() never removes an unexpired claim, so
the sweep period is independent of any operation's TTL.
"""
import asyncio
from typing import Callable, Optional

from app.config import settings
from app.core.idempotency import StoreUnavailable
from app.obs.logging import get_logger
from app.obs.metrics import metrics
from app.services.idempotency_store import IdempotencyStore

logger = get_logger(__name__)


class IdempotencySweeper:
    """Periodic sweep task owned by the application lifespan."""

    def __init__(
        self,
        store: IdempotencyStore,
        interval_seconds: Optional[float] = None,
        on_swept: Optional[Callable[[int], None]] = None,
    ):
        self.store = store
        self.interval_seconds = interval_seconds or settings.IDEMPOTENCY_SWEEP_INTERVAL_SECONDS
        self.on_swept = on_swept
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="idempotency-sweeper")
        logger.info(f"Idempotency sweeper started (every {self.interval_seconds}s)")

    async def stop(self):
        """Cancel the sweep loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Idempotency sweeper stopped")

    def run_once(self) -> int:
        """Sweep expired claims once. Store failures are logged, not raised."""
        try:
            swept = self.store.sweep()
        except StoreUnavailable as e:
            metrics.record_store_error("sweep")
            logger.warning(f"Idempotency sweep skipped: {e}")
            return 0

        metrics.record_swept(swept)
        if self.on_swept:
            self.on_swept(swept)
        if swept:
            logger.info("Swept expired idempotency claims", extra={"swept": swept})
        return swept

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.run_once()

"""
Idempotent Operation Coordinator

Wraps a side-effecting action so that concurrent or repeated invocations of
the same logical operation, (owner, operation name, payload), run at most
once per TTL window. The claim is released when the action fails so a
legitimate retry is never blocked by the coordinator's own bookkeeping.
"""
import functools
import inspect
import threading
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from app.config import settings
from app.core.fingerprint import fingerprint
from app.core.idempotency import (
    ANONYMOUS_OWNER,
    DuplicateOperation,
    IdempotencyRecord,
    StoreUnavailable,
    SuccessPolicy,
    derive_dedup_key,
)
from app.obs.logging import get_logger
from app.obs.metrics import metrics
from app.services.idempotency_store import Clock, IdempotencyStore, MemoryIdempotencyStore

logger = get_logger(__name__)

T = TypeVar("T")
Action = Callable[[], Union[T, Awaitable[T]]]


class IdempotencyCoordinator:
    """Exactly-once gate in front of side-effecting operations."""

    def __init__(
        self,
        store: IdempotencyStore,
        default_ttl_ms: Optional[int] = None,
        success_policy: Union[SuccessPolicy, str, None] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.default_ttl_ms = default_ttl_ms if default_ttl_ms is not None else settings.IDEMPOTENCY_TTL_MS
        self.success_policy = SuccessPolicy(success_policy or settings.IDEMPOTENCY_SUCCESS_POLICY)
        self.clock = clock or store.clock
        self._stats_lock = threading.Lock()
        self._stats = {
            "claims_total": 0,
            "duplicates_total": 0,
            "failures_total": 0,
            "store_errors_total": 0,
            "swept_total": 0,
        }

    def _count(self, name: str):
        with self._stats_lock:
            self._stats[name] += 1

    def record_swept(self, count: int):
        with self._stats_lock:
            self._stats["swept_total"] += count

    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return dict(self._stats)

    async def execute_once(
        self,
        owner_id: Optional[str],
        operation_name: str,
        payload: Any,
        action: Action,
        *,
        ttl_ms: Optional[int] = None,
        on_success: Union[SuccessPolicy, str, None] = None,
    ) -> T:
        """
        Run action unless the same operation already holds a live claim.

        Args:
            owner_id: Caller identity; empty or None means anonymous
            operation_name: Logical action tag, e.g. "create-post"
            payload: Operation input, fingerprinted independent of key order
            action: Zero-argument callable, sync or returning an awaitable
            ttl_ms: Claim lifetime in milliseconds (default from settings)
            on_success: SuccessPolicy for this call (default from settings)

        Returns:
            Whatever action returns

        Raises:
            DuplicateOperation: a live claim exists; action was not invoked
            StoreUnavailable: the claim could not be confirmed; action was not invoked
            Exception: anything action raised, unchanged, after the claim is released
        """
        if not operation_name:
            raise ValueError("operation_name is required")
        ttl_ms = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")
        policy = SuccessPolicy(on_success) if on_success is not None else self.success_policy
        owner_id = owner_id or ANONYMOUS_OWNER

        payload_fingerprint = fingerprint(payload)
        dedup_key = derive_dedup_key(owner_id, operation_name, payload_fingerprint)
        log_extra = {"owner_id": owner_id, "operation": operation_name, "dedup_key": dedup_key}

        # Claim: no await between building the record and the store's conditional write.
        now = self.clock()
        record = IdempotencyRecord(
            owner_id=owner_id,
            operation_name=operation_name,
            payload_fingerprint=payload_fingerprint,
            created_at_ms=now,
            expires_at_ms=now + ttl_ms,
        )
        try:
            existing = self.store.claim(dedup_key, record, ttl_ms)
        except StoreUnavailable:
            self._count("store_errors_total")
            metrics.record_store_error("claim")
            logger.error(
                "Idempotency store unavailable during claim, refusing operation",
                extra={**log_extra, "outcome": "store_unavailable"},
                exc_info=True,
            )
            raise

        if existing is not None:
            self._count("duplicates_total")
            metrics.record_duplicate(operation_name)
            logger.info(
                "Duplicate operation rejected",
                extra={**log_extra, "outcome": "duplicate", "first_seen_at": existing.created_at.isoformat()},
            )
            raise DuplicateOperation(dedup_key, operation_name, existing.created_at)

        self._count("claims_total")
        metrics.record_claim(operation_name)
        logger.debug("Operation claimed", extra={**log_extra, "outcome": "claimed"})

        try:
            result = action()
            if inspect.isawaitable(result):
                result = await result
        except BaseException:
            # Cancellation releases the claim too
            self._count("failures_total")
            self._release(dedup_key, operation_name, "failure", log_extra)
            logger.warning(
                "Operation failed, claim released for retry",
                extra={**log_extra, "outcome": "action_failed"},
                exc_info=True,
            )
            raise

        if policy is SuccessPolicy.CLEAR:
            self._release(dedup_key, operation_name, "cleared", log_extra)
        logger.info("Operation completed", extra={**log_extra, "outcome": "completed"})
        return result

    def dedup_key_for(self, owner_id: Optional[str], operation_name: str, payload: Any) -> str:
        return derive_dedup_key(owner_id or ANONYMOUS_OWNER, operation_name, fingerprint(payload))

    def release(self, owner_id: Optional[str], operation_name: str, payload: Any) -> bool:
        """
        Drop a retained claim on caller request, e.g. when the side effect it
        guarded failed downstream. Store failures propagate.

        Returns:
            True if a live claim was removed
        """
        dedup_key = self.dedup_key_for(owner_id, operation_name, payload)
        existing = self.store.get(dedup_key)
        self.store.delete(dedup_key)
        if existing is not None:
            metrics.record_release(operation_name, "requested")
            logger.info(
                "Claim released on request",
                extra={"owner_id": existing.owner_id, "operation": operation_name,
                       "dedup_key": dedup_key, "outcome": "released"},
            )
        return existing is not None

    def _release(self, dedup_key: str, operation_name: str, reason: str, log_extra: Dict[str, Any]):
        """Best-effort delete; the claim still lapses at TTL if this fails."""
        try:
            self.store.delete(dedup_key)
        except StoreUnavailable:
            self._count("store_errors_total")
            metrics.record_store_error("release")
            logger.error(
                "Failed to release idempotency claim, it will lapse at TTL",
                extra={**log_extra, "outcome": "release_failed"},
                exc_info=True,
            )
            return
        metrics.record_release(operation_name, reason)


def _resolve_owner(args: tuple, kwargs: Dict[str, Any]) -> str:
    for name in ("owner_id", "user_id"):
        if kwargs.get(name):
            return str(kwargs[name])
    if args:
        first = args[0]
        for name in ("owner_id", "user_id", "userId"):
            value = first.get(name) if isinstance(first, Mapping) else getattr(first, name, None)
            if value:
                return str(value)
    return ANONYMOUS_OWNER


def idempotent(
    coordinator: IdempotencyCoordinator,
    operation_name: str,
    fn: Callable[..., Any],
    *,
    ttl_ms: Optional[int] = None,
    on_success: Union[SuccessPolicy, str, None] = None,
) -> Callable[..., Awaitable[Any]]:
    """
    Wrap fn so every call goes through coordinator.execute_once.

    The owner is taken from an owner_id/user_id keyword, or the same field
    on the first positional argument, falling back to anonymous. The payload
    is the first positional argument, or the keyword arguments when the call
    has none.

    Usage:
        create_post = idempotent(coordinator, "create-post", posts.create)
        await create_post({"user_id": "u1", "text": "hi"})
    """
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        payload = args[0] if args else kwargs
        return await coordinator.execute_once(
            _resolve_owner(args, kwargs),
            operation_name,
            payload,
            lambda: fn(*args, **kwargs),
            ttl_ms=ttl_ms,
            on_success=on_success,
        )

    return wrapper


def build_store(config=None) -> IdempotencyStore:
    """Create the store selected by IDEMPOTENCY_STORE."""
    config = config or settings
    backend = config.IDEMPOTENCY_STORE
    if backend == "redis":
        from app.services.redis_idempotency_store import RedisIdempotencyStore

        return RedisIdempotencyStore(redis_url=config.REDIS_URL, key_prefix=config.IDEMPOTENCY_KEY_PREFIX)
    if backend == "database":
        from app.database import init_db
        from app.services.sql_idempotency_store import SqlIdempotencyStore

        init_db()
        return SqlIdempotencyStore()
    return MemoryIdempotencyStore()


_coordinator: Optional[IdempotencyCoordinator] = None
_coordinator_lock = threading.Lock()


def get_coordinator() -> IdempotencyCoordinator:
    """Process-wide coordinator built from settings (FastAPI dependency)."""
    global _coordinator
    if _coordinator is None:
        with _coordinator_lock:
            if _coordinator is None:
                _coordinator = IdempotencyCoordinator(build_store())
                logger.info(f"Idempotency coordinator using {settings.IDEMPOTENCY_STORE} store")
    return _coordinator

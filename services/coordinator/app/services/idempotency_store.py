"""
Idempotency store interface and the in-memory backend.

All coordinator bookkeeping goes through get/set/delete/claim, so a store is
the only serialization point for claims. Backends must treat an expired
record as absent on every read, whether or not sweep() has run.
"""
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Callable, Dict, Optional

from app.core.idempotency import IdempotencyRecord
from app.obs.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], int]


def now_ms() -> int:
    """Wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


class IdempotencyStore(ABC):
    """Key-value storage for claims with expiry semantics."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or now_ms

    @abstractmethod
    def get(self, key: str) -> Optional[IdempotencyRecord]:
        """Return the live record for key, or None if absent or expired."""

    @abstractmethod
    def set(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> None:
        """Store record under key for ttl_ms milliseconds."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Deleting an absent key is not an error."""

    @abstractmethod
    def sweep(self) -> int:
        """Remove expired records and return how many were removed."""

    def claim(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> Optional[IdempotencyRecord]:
        """
        Store record only if no live record exists for key.

        Returns:
            None when the claim was taken, otherwise the existing record.

        Note:
            This default is check-then-set with no suspension point between
            the two calls, which is atomic on a single-threaded event loop
            only. Backends shared between threads or processes override it
            with a real conditional write.
        """
        existing = self.get(key)
        if existing is not None:
            return existing
        self.set(key, record, ttl_ms)
        return None

    def ping(self) -> bool:
        return True


class MemoryIdempotencyStore(IdempotencyStore):
    """Process-local store. Claims are serialized by a lock."""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._records: Dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: int) -> Optional[IdempotencyRecord]:
        record = self._records.get(key)
        if record is None:
            return None
        if record.is_expired(now):
            del self._records[key]
            return None
        return record

    def get(self, key: str) -> Optional[IdempotencyRecord]:
        with self._lock:
            return self._live(key, self.clock())

    def set(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> None:
        record = replace(record, expires_at_ms=self.clock() + ttl_ms)
        with self._lock:
            self._records[key] = record

    def delete(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def claim(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> Optional[IdempotencyRecord]:
        with self._lock:
            existing = self._live(key, self.clock())
            if existing is not None:
                return existing
            self._records[key] = record
            return None

    def sweep(self) -> int:
        with self._lock:
            now = self.clock()
            expired = [key for key, record in self._records.items() if record.is_expired(now)]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired idempotency claims")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

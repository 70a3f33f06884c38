"""
Redis-backed idempotency store.

Claims are written with SET NX PX, so the conditional write in Redis is the
linearization point and concurrent workers across processes see exactly one
winner per dedup key. Expiry is native to Redis; sweep() has nothing to do.
"""
import json
from typing import Optional

import redis

from app.config import settings
from app.core.idempotency import IdempotencyRecord, StoreUnavailable
from app.obs.logging import get_logger
from app.services.idempotency_store import Clock, IdempotencyStore

logger = get_logger(__name__)

# A claim can lose SET NX and then find the winner already gone (released or
# expired); give up after this many rounds.
MAX_CLAIM_ATTEMPTS = 3


class RedisIdempotencyStore(IdempotencyStore):
    """Idempotency store on a shared Redis instance."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self.key_prefix = key_prefix or settings.IDEMPOTENCY_KEY_PREFIX
        if client is None:
            url = redis_url or settings.REDIS_URL
            if not url:
                raise ValueError("A Redis URL is required for the Redis idempotency store")
            client = redis.from_url(url, decode_responses=True)
        self.client = client

    def _redis_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def _decode(self, raw, check_expiry: bool = True) -> Optional[IdempotencyRecord]:
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        record = IdempotencyRecord.from_dict(json.loads(raw))
        if check_expiry and record.is_expired(self.clock()):
            return None
        return record

    def get(self, key: str) -> Optional[IdempotencyRecord]:
        try:
            raw = self.client.get(self._redis_key(key))
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis read failed for idempotency key {key}", e) from e
        return self._decode(raw)

    def set(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> None:
        try:
            self.client.set(self._redis_key(key), json.dumps(record.to_dict()), px=ttl_ms)
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis write failed for idempotency key {key}", e) from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete(self._redis_key(key))
        except redis.RedisError as e:
            raise StoreUnavailable(f"Redis delete failed for idempotency key {key}", e) from e

    def claim(self, key: str, record: IdempotencyRecord, ttl_ms: int) -> Optional[IdempotencyRecord]:
        redis_key = self._redis_key(key)
        payload = json.dumps(record.to_dict())
        for _ in range(MAX_CLAIM_ATTEMPTS):
            try:
                if self.client.set(redis_key, payload, nx=True, px=ttl_ms):
                    return None
                # Redis expiry is authoritative for a key that still exists
                existing = self._decode(self.client.get(redis_key), check_expiry=False)
            except redis.RedisError as e:
                raise StoreUnavailable(f"Redis claim failed for idempotency key {key}", e) from e
            if existing is not None:
                return existing
        raise StoreUnavailable(f"Could not settle claim for idempotency key {key}")

    def sweep(self) -> int:
        return 0

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

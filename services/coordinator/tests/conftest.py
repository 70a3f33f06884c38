"""
Shared fixtures for coordinator tests.
"""
import os

# Set test environment variables before anything imports app.config
os.environ.update({
    "ENVIRONMENT": "test",
    "DATABASE_URL": "sqlite://",
    "IDEMPOTENCY_STORE": "memory",
    "IDEMPOTENCY_TTL_MS": "900000",
    "IDEMPOTENCY_SUCCESS_POLICY": "retain",
    "ENABLE_RATE_LIMITING": "false",
    "ENABLE_TRACING": "false",
    "SENTRY_DSN": "",
    "ALLOWED_ORIGINS": "http://localhost:3000,https://test.example.com",
})
os.environ.pop("REDIS_URL", None)
os.environ.pop("UPSTASH_REDIS_URL", None)

import pytest

from app.services.idempotency import IdempotencyCoordinator
from app.services.idempotency_store import MemoryIdempotencyStore


class FakeClock:
    """Manually advanced epoch-millisecond clock."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return MemoryIdempotencyStore(clock=clock)


@pytest.fixture
def coordinator(memory_store):
    return IdempotencyCoordinator(memory_store, default_ttl_ms=60_000, success_policy="retain")

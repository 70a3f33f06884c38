"""
Tests for rate limiting functionality.
"""
import json
from unittest.mock import MagicMock, patch

import pytest
import redis
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.middleware.rate_limiter import (
    RateLimiter,
    RateLimitMiddleware,
    create_rate_limit_response,
    parse_limit,
    select_tier,
)


def make_limiter(**limits):
    limiter = RateLimiter(redis_url="")
    for tier, value in limits.items():
        limiter.limits[tier] = value
    return limiter


class TestLimitParsing:
    """Test limit strings and tier selection."""

    def test_parse_limit(self):
        """Test limit string parsing."""
        assert parse_limit("60/minute") == (60, 60)
        assert parse_limit("20/hour") == (20, 3600)
        assert parse_limit("10/second") == (10, 1)

        # Default fallback
        assert parse_limit("invalid") == (60, 60)
        assert parse_limit("10/fortnight") == (60, 60)

    def test_default_tiers(self):
        limiter = RateLimiter(redis_url="")
        assert limiter.limits == {
            "global": (200, 60),
            "write": (60, 60),
            "sensitive": (10, 60),
            "ai": (20, 3600),
        }

    @pytest.mark.parametrize("method,path,tier", [
        ("GET", "/api/v1/idempotency/stats", "global"),
        ("POST", "/api/v1/operations/create-post", "write"),
        ("DELETE", "/api/v1/posts/1", "write"),
        ("POST", "/api/v1/auth/login", "sensitive"),
        ("GET", "/api/v1/payment/session", "sensitive"),
        ("POST", "/api/v1/ai/caption", "ai"),
        ("POST", "/api/v1/operations/generate-image", "ai"),
    ])
    def test_select_tier(self, method, path, tier):
        assert select_tier(method, path) == tier


class TestInProcessLimiter:
    """Test the in-process sliding window."""

    def test_allows_up_to_limit(self):
        limiter = make_limiter(write=(3, 60))

        results = [limiter.check("ip-u1-write", "write") for _ in range(4)]

        assert [allowed for allowed, _ in results] == [True, True, True, False]
        assert results[-1][1] >= 1

    def test_keys_are_independent(self):
        limiter = make_limiter(write=(1, 60))
        assert limiter.check("ip-u1-write", "write")[0]
        assert limiter.check("ip-u2-write", "write")[0]
        assert not limiter.check("ip-u1-write", "write")[0]

    def test_window_slides(self):
        limiter = make_limiter(**{"global": (1, 60)})
        with patch("app.middleware.rate_limiter.time.monotonic", side_effect=[1000.0, 1001.0, 1061.0]):
            assert limiter.check("k", "global")[0]
            assert not limiter.check("k", "global")[0]
            assert limiter.check("k", "global")[0]

    def test_idle_windows_are_pruned(self):
        limiter = make_limiter()
        with patch("app.middleware.rate_limiter.time.monotonic", return_value=1000.0):
            limiter.check("a-write", "write")
            limiter.check("b-write", "write")
        assert len(limiter._windows) == 2

        limiter._prune(1000.0 + 3599)
        assert len(limiter._windows) == 2

        limiter._prune(1000.0 + 3600)
        assert limiter._windows == {}

    def test_pruning_runs_during_checks(self):
        limiter = make_limiter(write=(1, 60))
        with patch("app.middleware.rate_limiter.PRUNE_EVERY", 3), \
                patch("app.middleware.rate_limiter.time.monotonic", side_effect=[0.0, 0.0, 4000.0]):
            limiter.check("a-write", "write")
            limiter.check("b-write", "write")
            assert limiter.check("c-write", "write")[0]

        assert list(limiter._windows) == ["c-write"]

    def test_reset(self):
        limiter = make_limiter(write=(1, 60))
        limiter.check("k", "write")
        limiter.reset()
        assert limiter.check("k", "write")[0]


class TestRedisLimiter:
    """Test the Redis sliding window."""

    def _limiter(self, current_count):
        client = MagicMock()
        pipe = MagicMock()
        pipe.execute.return_value = [0, current_count, 1, True]
        client.pipeline.return_value = pipe
        client.zrange.return_value = []
        limiter = RateLimiter(redis_url="", redis_client=client)
        return limiter, client, pipe

    def test_allows_under_limit(self):
        limiter, client, pipe = self._limiter(current_count=5)

        assert limiter.check("k", "write") == (True, 0.0)
        pipe.zadd.assert_called_once()
        pipe.expire.assert_called_once_with("rate_limit:k", 60)

    def test_rejects_at_limit(self):
        limiter, client, _ = self._limiter(current_count=60)

        allowed, retry_after = limiter.check("k", "write")

        assert not allowed
        assert retry_after == 60.0
        client.zremrangebyscore.assert_called_once()

    def test_redis_failure_fails_open(self):
        limiter, client, _ = self._limiter(current_count=0)
        client.pipeline.side_effect = redis.ConnectionError("down")

        assert limiter.check("k", "write") == (True, 0.0)

    @patch("redis.from_url")
    def test_unreachable_redis_falls_back_to_memory(self, mock_from_url):
        mock_client = MagicMock()
        mock_client.ping.side_effect = redis.ConnectionError("down")
        mock_from_url.return_value = mock_client

        limiter = RateLimiter(redis_url="redis://localhost:6379/1")

        assert limiter.redis_client is None
        assert limiter.check("k", "write")[0]


class TestRateLimitResponse:
    """Test the 429 response format."""

    def test_response_format(self):
        response = create_rate_limit_response("write", 12.2, trace_id="trace-1")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "13"
        assert response.headers["X-Request-Id"] == "trace-1"
        body = json.loads(response.body)
        assert body == {
            "code": 429,
            "error": "Write Rate Limit Exceeded",
            "message": "Too many write operations, retry in 13s",
            "retryAfter": 13,
            "trace_id": "trace-1",
        }

    def test_ai_tier_reports_hours(self):
        response = create_rate_limit_response("ai", 1800)
        body = json.loads(response.body)
        assert body["message"] == "Too many AI generations, retry in 1h"
        assert body["retryAfter"] == 1800
        assert response.headers["X-Request-Id"] == body["trace_id"]


class TestRateLimitMiddleware:
    """Test the ASGI middleware end to end."""

    def _client(self, limiter):
        app = FastAPI()
        app.add_middleware(RateLimitMiddleware, limiter=limiter)

        @app.post("/api/v1/operations/{name}")
        async def reserve(name: str):
            return {"ok": True}

        @app.get("/health")
        async def health():
            return {"status": "healthy"}

        return TestClient(app)

    def test_rejects_over_limit(self):
        client = self._client(make_limiter(write=(2, 60)))
        headers = {"X-User-Id": "u1"}

        with patch("app.config.settings.ENABLE_RATE_LIMITING", True):
            codes = [client.post("/api/v1/operations/create-post", headers=headers).status_code for _ in range(3)]
            rejected = client.post("/api/v1/operations/create-post", headers=headers)

        assert codes == [200, 200, 429]
        assert rejected.json()["error"] == "Write Rate Limit Exceeded"
        assert "Retry-After" in rejected.headers

    def test_rotating_user_header_shares_one_bucket(self):
        """Test that a fresh X-User-Id per request does not escape the limit."""
        limiter = make_limiter(write=(5, 60))
        client = self._client(limiter)

        with patch("app.config.settings.ENABLE_RATE_LIMITING", True):
            codes = [
                client.post("/api/v1/operations/x", headers={"X-User-Id": f"u{i}"}).status_code
                for i in range(20)
            ]

        assert codes.count(200) == 5
        assert codes.count(429) == 15
        assert list(limiter._windows) == ["testclient-write"]

    def test_health_is_exempt(self):
        client = self._client(make_limiter(**{"global": (1, 60)}))

        with patch("app.config.settings.ENABLE_RATE_LIMITING", True):
            codes = {client.get("/health").status_code for _ in range(5)}

        assert codes == {200}

    def test_disabled(self):
        client = self._client(make_limiter(write=(1, 60)))

        with patch("app.config.settings.ENABLE_RATE_LIMITING", False):
            codes = {client.post("/api/v1/operations/x").status_code for _ in range(3)}

        assert codes == {200}

"""
Rate limiting middleware for the Artisan coordinator service.
Implements tiered per-client rate limiting using Redis sliding windows, with
an in-process window when Redis is not configured.
"""
import math
import threading
import time
import uuid
from collections import deque
from typing import Deque, Dict, Optional, Tuple

import redis
from fastapi import Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.obs.logging import get_logger
from app.obs.metrics import metrics

logger = get_logger(__name__)

WRITE_METHODS = ("POST", "PUT", "PATCH", "DELETE")
ALLOW_LIST = ("127.0.0.1", "::1")

# In-process windows idle longer than the longest tier are dropped every N checks
PRUNE_EVERY = 1000

# tier -> (error title, message template); {after} is the wait in the tier's unit
TIER_ERRORS = {
    "global": ("Too Many Requests", "Rate limit exceeded, retry in {after}s"),
    "write": ("Write Rate Limit Exceeded", "Too many write operations, retry in {after}s"),
    "sensitive": ("Authentication/Payment Rate Limit Exceeded", "Too many attempts, retry in {after}s"),
    "ai": ("AI Generation Rate Limit Exceeded", "Too many AI generations, retry in {after}h"),
}


def parse_limit(limit_str: str) -> Tuple[int, int]:
    """Parse limit string like '60/minute' into (count, seconds)."""
    period_map = {
        'second': 1,
        'minute': 60,
        'hour': 3600,
        'day': 86400
    }
    try:
        count, period = limit_str.split('/')
        return int(count), period_map[period.strip()]
    except (ValueError, KeyError):
        logger.warning(f"Invalid limit format: {limit_str}, using default 60/minute")
        return 60, 60


def select_tier(method: str, path: str) -> str:
    """Pick the most specific limit tier for a request."""
    if "/ai" in path or "/generate" in path:
        return "ai"
    if "/auth" in path or "/payment" in path:
        return "sensitive"
    if method.upper() in WRITE_METHODS:
        return "write"
    return "global"


class RateLimiter:
    """Sliding-window rate limiter, shared through Redis when available."""

    def __init__(self, redis_url: Optional[str] = None, redis_client=None):
        self.redis_url = redis_url if redis_url is not None else settings.REDIS_URL
        self.redis_client = redis_client
        self.limits = {
            "global": parse_limit(settings.RATE_LIMIT_GLOBAL),
            "write": parse_limit(settings.RATE_LIMIT_WRITE),
            "sensitive": parse_limit(settings.RATE_LIMIT_SENSITIVE),
            "ai": parse_limit(settings.RATE_LIMIT_AI),
        }
        self._windows: Dict[str, Deque[float]] = {}
        self._checks = 0
        self._lock = threading.Lock()
        if self.redis_client is None and self.redis_url:
            self._connect_redis()

    def _connect_redis(self):
        """Connect to Redis with error handling."""
        try:
            self.redis_client = redis.from_url(self.redis_url, decode_responses=True)
            self.redis_client.ping()
            logger.info("Connected to Redis for rate limiting")
        except redis.RedisError as e:
            logger.error(f"Failed to connect to Redis, using in-process rate limiting: {e}")
            self.redis_client = None

    def _get_redis_key(self, key: str) -> str:
        return f"rate_limit:{key}"

    def _check_redis(self, key: str, count: int, window_seconds: int) -> Tuple[bool, float]:
        redis_key = self._get_redis_key(key)
        now = time.time()
        try:
            pipe = self.redis_client.pipeline()
            pipe.zremrangebyscore(redis_key, 0, now - window_seconds)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {uuid.uuid4().hex: now})
            pipe.expire(redis_key, window_seconds)
            current_count = pipe.execute()[1]

            if current_count >= count:
                # Rejected requests do not consume the window
                self.redis_client.zremrangebyscore(redis_key, now, now)
                oldest = self.redis_client.zrange(redis_key, 0, 0, withscores=True)
                if oldest:
                    return False, max(1.0, window_seconds - (now - float(oldest[0][1])))
                return False, float(window_seconds)
            return True, 0.0
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            # Fail open: rate limiting is protection, not correctness
            return True, 0.0

    def _check_memory(self, key: str, count: int, window_seconds: int) -> Tuple[bool, float]:
        now = time.monotonic()
        with self._lock:
            self._checks += 1
            if self._checks % PRUNE_EVERY == 0:
                self._prune(now)
            window = self._windows.setdefault(key, deque())
            while window and window[0] <= now - window_seconds:
                window.popleft()
            if len(window) >= count:
                return False, max(1.0, window_seconds - (now - window[0]))
            window.append(now)
            return True, 0.0

    def _prune(self, now: float):
        horizon = now - max(window_seconds for _, window_seconds in self.limits.values())
        stale = [key for key, window in self._windows.items() if not window or window[-1] <= horizon]
        for key in stale:
            del self._windows[key]

    def check(self, key: str, tier: str) -> Tuple[bool, float]:
        """Check a request against a tier. Returns (allowed, retry_after_seconds)."""
        count, window_seconds = self.limits[tier]
        if self.redis_client is not None:
            return self._check_redis(key, count, window_seconds)
        return self._check_memory(key, count, window_seconds)

    def reset(self):
        """Forget in-process windows."""
        with self._lock:
            self._windows.clear()


# Global rate limiter instance
rate_limiter = RateLimiter()


def client_key(request: Request, tier: str) -> str:
    """
    Rate limit by client IP, one bucket per tier.

    X-User-Id is caller-asserted, so it never selects the bucket.
    """
    ip = request.client.host if request.client else "unknown"
    return ip if tier == "global" else f"{ip}-{tier}"


def create_rate_limit_response(tier: str, retry_after: float, trace_id: Optional[str] = None) -> JSONResponse:
    """Create standardized 429 rate limit response."""
    trace_id = trace_id or str(uuid.uuid4())
    error, template = TIER_ERRORS[tier]
    retry_seconds = max(1, math.ceil(retry_after))
    after = math.ceil(retry_seconds / 3600) if tier == "ai" else retry_seconds

    response = JSONResponse(
        status_code=429,
        content={
            "code": 429,
            "error": error,
            "message": template.format(after=after),
            "retryAfter": retry_seconds,
            "trace_id": trace_id,
        }
    )
    response.headers["Retry-After"] = str(retry_seconds)
    response.headers["X-Request-Id"] = trace_id
    return response


def _is_exempt(request: Request) -> bool:
    exempt_paths = [
        "/health",
        "/ready",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
    ]
    if request.client and request.client.host in ALLOW_LIST:
        return True
    return any(request.url.path.startswith(path) for path in exempt_paths)


class RateLimitMiddleware:
    """Middleware for tiered rate limiting."""

    def __init__(self, app, limiter: Optional[RateLimiter] = None):
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or not settings.ENABLE_RATE_LIMITING:
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        if _is_exempt(request):
            await self.app(scope, receive, send)
            return

        limiter = self.limiter or rate_limiter
        tier = select_tier(request.method, request.url.path)
        key = client_key(request, tier)
        allowed, retry_after = limiter.check(key, tier)
        if not allowed:
            metrics.record_rate_limit_hit(tier)
            logger.warning(
                f"Rate limit hit: {tier}",
                extra={
                    "route": request.url.path,
                    "method": request.method,
                    "ip": request.client.host if request.client else None,
                }
            )
            response = create_rate_limit_response(tier, retry_after, request.headers.get("X-Request-Id"))
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)

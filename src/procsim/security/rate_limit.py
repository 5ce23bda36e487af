"""Fixed-window rate limiting for the HTTP surface."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol, Tuple

import redis
from fastapi import Request
from prometheus_client import Counter
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from ..constants import (
    RATE_LIMIT_LIMIT_HEADER,
    RATE_LIMIT_REMAINING_HEADER,
    RATE_LIMIT_RESET_HEADER,
    RETRY_AFTER_HEADER,
)
from ..logging import get_logger
from ..util.concurrency import maybe_to_thread

logger = get_logger(__name__)

KEY_PREFIX = "ratelimit:"
SUBMISSION_PATH = "/simulation_jobs"
EXEMPT_PATHS = frozenset({"/health", "/metrics"})

_REJECTIONS = Counter(
    "procsim_rate_limit_rejections_total",
    "Requests rejected by the rate limiter.",
)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int = 0
    degraded: bool = False


class RateLimiter(Protocol):
    limit: int
    window_seconds: int

    def check(self, client_key: str) -> RateLimitDecision:
        ...


def _decide(limit: int, count: int, ttl: int, now: float) -> RateLimitDecision:
    ttl = max(1, ttl)
    reset_at = int(math.ceil(now)) + ttl
    if count > limit:
        return RateLimitDecision(
            allowed=False, limit=limit, remaining=0, reset_at=reset_at, retry_after=ttl
        )
    return RateLimitDecision(
        allowed=True, limit=limit, remaining=max(0, limit - count), reset_at=reset_at
    )


class InMemoryRateLimiter:
    """Per-process counters; suitable for a single API instance and for tests."""

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.limit = int(limit)
        self.window_seconds = int(window_seconds)
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def check(self, client_key: str) -> RateLimitDecision:
        now = self._clock()
        key = f"{KEY_PREFIX}{client_key}"
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
            # Best-effort cleanup of expired windows for other clients.
            if len(self._windows) > 10_000:
                self._windows = {
                    k: v for k, v in self._windows.items() if now - v[0] < self.window_seconds
                }
        ttl = int(math.ceil(started + self.window_seconds - now))
        return _decide(self.limit, count, ttl, now)


class RedisRateLimiter:
    """Shared counters in Redis, safe across API replicas.

    The counter is created with its expiry and incremented inside one MULTI/EXEC
    transaction, so a key can never exist without a TTL. Any Redis failure
    admits the request.
    """

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: int,
        redis_url: str | None = None,
        client: "redis.Redis[Any] | None" = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if client is None:
            if not redis_url:
                raise ValueError("redis_url must be provided when client is not supplied")
            client = redis.Redis.from_url(redis_url, socket_timeout=1.0, socket_connect_timeout=1.0)
        self._client = client
        self.limit = int(limit)
        self.window_seconds = int(window_seconds)
        self._clock = clock
        self._logger = get_logger(__name__)

    def check(self, client_key: str) -> RateLimitDecision:
        key = f"{KEY_PREFIX}{client_key}"
        now = self._clock()
        try:
            count, ttl = self._increment(key)
        except (redis.RedisError, OSError) as exc:
            self._logger.warning(
                "rate_limit.backend_unavailable", clientKey=client_key, reason=str(exc)
            )
            return RateLimitDecision(
                allowed=True,
                limit=self.limit,
                remaining=self.limit,
                reset_at=int(math.ceil(now)) + self.window_seconds,
                degraded=True,
            )
        return _decide(self.limit, count, ttl, now)

    def _increment(self, key: str) -> Tuple[int, int]:
        pipe = self._client.pipeline(transaction=True)
        pipe.set(key, 0, ex=self.window_seconds, nx=True)
        pipe.incr(key)
        pipe.ttl(key)
        _created, count, ttl = pipe.execute()
        if int(ttl) < 0:
            # Counter left without expiry by an older writer.
            self._client.expire(key, self.window_seconds)
            ttl = self.window_seconds
        return int(count), int(ttl)


def _window_phrase(window_seconds: int) -> str:
    if window_seconds == 60:
        return "minute"
    return f"{window_seconds} seconds"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a ``RateLimiter`` per remote address and emit the rate-limit headers."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        limiter: RateLimiter,
        scope: str = "submission",
        offload: bool = True,
    ) -> None:
        super().__init__(app)
        self._limiter = limiter
        self._scope = scope
        self._offload = offload

    def _applies(self, request: Request) -> bool:
        path = request.url.path.rstrip("/") or "/"
        if self._scope == "all":
            return path not in EXEMPT_PATHS
        return request.method == "POST" and path == SUBMISSION_PATH

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        if not self._applies(request):
            return await call_next(request)

        client_key = (request.client.host if request.client else None) or "unknown"
        decision = await maybe_to_thread(self._offload, self._limiter.check, client_key)

        if not decision.allowed:
            _REJECTIONS.inc()
            logger.warning(
                "rate_limit.exceeded",
                clientKey=client_key,
                limit=decision.limit,
                retryAfter=decision.retry_after,
            )
            window = _window_phrase(self._limiter.window_seconds)
            response: Response = JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded",
                    "message": (
                        f"Too many requests. Maximum {decision.limit} requests per {window} allowed."
                    ),
                    "retryAfter": decision.retry_after,
                },
            )
            response.headers[RETRY_AFTER_HEADER] = str(decision.retry_after)
            _apply_headers(response, decision)
            return response

        response = await call_next(request)
        if not decision.degraded:
            _apply_headers(response, decision)
        return response


def _apply_headers(response: Response, decision: RateLimitDecision) -> None:
    response.headers[RATE_LIMIT_LIMIT_HEADER] = str(decision.limit)
    response.headers[RATE_LIMIT_REMAINING_HEADER] = str(decision.remaining)
    response.headers[RATE_LIMIT_RESET_HEADER] = str(decision.reset_at)


__all__ = [
    "EXEMPT_PATHS",
    "InMemoryRateLimiter",
    "KEY_PREFIX",
    "RateLimitDecision",
    "RateLimitMiddleware",
    "RateLimiter",
    "RedisRateLimiter",
]

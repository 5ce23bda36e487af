"""Request guards for the procsim API."""

from .headers import DEFAULT_SECURITY_HEADERS, SecurityHeadersMiddleware
from .rate_limit import (
    InMemoryRateLimiter,
    RateLimitDecision,
    RateLimitMiddleware,
    RateLimiter,
    RedisRateLimiter,
)

__all__ = [
    "DEFAULT_SECURITY_HEADERS",
    "InMemoryRateLimiter",
    "RateLimitDecision",
    "RateLimitMiddleware",
    "RateLimiter",
    "RedisRateLimiter",
    "SecurityHeadersMiddleware",
]

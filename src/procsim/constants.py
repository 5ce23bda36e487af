"""Shared constants for the procsim service."""

SERVICE_NAME = "procsim"
CORRELATION_HEADER = "X-Correlation-Id"

RATE_LIMIT_LIMIT_HEADER = "X-RateLimit-Limit"
RATE_LIMIT_REMAINING_HEADER = "X-RateLimit-Remaining"
RATE_LIMIT_RESET_HEADER = "X-RateLimit-Reset"
RETRY_AFTER_HEADER = "Retry-After"

JOB_QUEUE_NAME = "simulation-jobs"

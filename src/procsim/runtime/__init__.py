"""Runtime helper factories for procsim."""

from .factory import (
    build_channel,
    build_consumer,
    build_lane,
    build_rate_limiter,
    build_repository,
    build_solver,
    should_offload_blocking_calls,
)

__all__ = [
    "build_channel",
    "build_consumer",
    "build_lane",
    "build_rate_limiter",
    "build_repository",
    "build_solver",
    "should_offload_blocking_calls",
]

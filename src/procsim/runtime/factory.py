"""Factories for building runtime components used by the API and the worker."""

from __future__ import annotations

from typing import Optional

from ..config import AppConfig, ConfigError
from ..security.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from ..services.channel import CeleryChannel, InProcessChannel, MessageChannel
from ..services.consumer import JobConsumer
from ..services.lane import SolverLane
from ..services.persister import ResultPersister
from ..solver import FlowsheetSolver, InMemoryFlowsheetSolver
from ..storage import InMemorySimulationRepository, SimulationRepository, SqliteSimulationRepository


def build_repository(config: AppConfig) -> SimulationRepository:
    """Create the simulation record store for the configured backend."""

    backend = config.store_backend
    if backend == "memory":
        return InMemorySimulationRepository()
    if backend == "sqlite":
        return SqliteSimulationRepository(config.store_path)
    raise ConfigError(f"Unsupported store backend '{backend}'")


def build_solver(config: AppConfig) -> FlowsheetSolver:
    """Instantiate the flowsheet solver for the configured backend."""

    backend = config.solver_backend
    if backend == "inmemory":
        return InMemoryFlowsheetSolver()
    raise ConfigError(f"Unsupported solver backend '{backend}'")


def build_lane(config: AppConfig) -> SolverLane:
    return SolverLane(lambda: build_solver(config), name=f"{config.service_name}-solver")


def build_consumer(
    config: AppConfig,
    repository: SimulationRepository,
    *,
    lane: Optional[SolverLane] = None,
) -> JobConsumer:
    """Wire a consumer with its own solver lane and persister."""

    return JobConsumer(
        lane=lane or build_lane(config),
        persister=ResultPersister(repository),
        solve_timeout_seconds=float(config.solver_timeout_seconds),
    )


def build_channel(config: AppConfig, repository: SimulationRepository) -> MessageChannel:
    """Create the message channel; the thread backend runs a consumer in this process."""

    backend = config.channel_backend
    if backend == "thread":
        return InProcessChannel(
            build_consumer(config, repository),
            max_retries=config.job_max_retries,
            retry_interval=config.job_retry_interval_seconds,
        )
    if backend == "celery":
        from ..services.celery_app import configure_celery

        configure_celery(config)
        return CeleryChannel()
    raise ConfigError(f"Unsupported channel backend '{backend}'")


def build_rate_limiter(config: AppConfig) -> RateLimiter | None:
    """Create the rate limiter, or None when limiting is disabled."""

    backend = config.rate_limit_backend
    if backend == "disabled":
        return None
    if backend == "memory":
        return InMemoryRateLimiter(
            limit=config.rate_limit_requests,
            window_seconds=config.rate_limit_window_seconds,
        )
    if backend == "redis":
        if not config.rate_limit_redis_url:
            raise ConfigError("RATE_LIMIT_REDIS_URL must be set when RATE_LIMIT_BACKEND=redis")
        return RedisRateLimiter(
            limit=config.rate_limit_requests,
            window_seconds=config.rate_limit_window_seconds,
            redis_url=config.rate_limit_redis_url,
        )
    raise ConfigError(f"Unsupported rate limit backend '{backend}'")


def should_offload_blocking_calls(config: AppConfig) -> bool:
    """Return True when store and limiter calls should run in background threads."""

    return bool(getattr(config, "offload_blocking", True))


__all__ = [
    "build_channel",
    "build_consumer",
    "build_lane",
    "build_rate_limiter",
    "build_repository",
    "build_solver",
    "should_offload_blocking_calls",
]

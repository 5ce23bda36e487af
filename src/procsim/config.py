"""Application configuration management."""

from __future__ import annotations

import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from . import __version__
from .constants import SERVICE_NAME
from .logging import DEFAULT_LOG_LEVEL


class ConfigError(RuntimeError):
    """Raised when application configuration is invalid."""


class AppConfig(BaseModel):
    """Validated application configuration loaded from environment variables."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    host: str = Field(default="0.0.0.0", description="Host interface to bind the HTTP server")
    port: int = Field(default=8000, ge=1, le=65535, description="Port for the HTTP server")
    log_level: str = Field(default=DEFAULT_LOG_LEVEL, description="Root log level")
    service_name: str = Field(default=SERVICE_NAME, description="Service identifier")
    service_version: str = Field(default=__version__, description="Service version override")
    environment: str = Field(default="development", description="Deployment environment tag")
    solver_backend: str = Field(
        default="inmemory", description="Flowsheet solver backend (inmemory)"
    )
    solver_timeout_seconds: int = Field(
        default=60, ge=1, description="Timeout (seconds) applied to each solver call"
    )
    store_backend: str = Field(
        default="memory", description="Simulation record store backend (memory or sqlite)"
    )
    store_path: str = Field(
        default="var/simulations.db",
        description="Filesystem path of the SQLite store when STORE_BACKEND=sqlite",
    )
    channel_backend: str = Field(
        default="thread",
        description="Message channel carrying job messages to workers (thread or celery)",
    )
    job_max_retries: int = Field(
        default=3, ge=0, description="Delivery retries after a transient infrastructure failure"
    )
    job_retry_interval_seconds: float = Field(
        default=5.0, ge=0.0, description="Fixed delay (seconds) between delivery retries"
    )
    stale_job_seconds: int = Field(
        default=900,
        ge=1,
        description="Age (seconds) after which an in-flight record is reported as stale",
    )
    celery_broker_url: Optional[str] = Field(
        default="memory://", description="Celery broker URL"
    )
    celery_result_backend: Optional[str] = Field(
        default="cache+memory://", description="Celery result backend URL"
    )
    celery_task_always_eager: bool = Field(
        default=False, description="Run Celery tasks eagerly (for local testing)"
    )
    celery_task_eager_propagates: bool = Field(
        default=True, description="Propagate exceptions when tasks run eagerly"
    )
    rate_limit_backend: str = Field(
        default="memory", description="Rate limiter backend (memory, redis or disabled)"
    )
    rate_limit_redis_url: Optional[str] = Field(
        default=None, description="Redis URL used when RATE_LIMIT_BACKEND=redis"
    )
    rate_limit_requests: int = Field(
        default=15, ge=1, description="Requests allowed per client within one window"
    )
    rate_limit_window_seconds: int = Field(
        default=60, ge=1, description="Length (seconds) of the fixed rate-limit window"
    )
    rate_limit_scope: str = Field(
        default="submission",
        description="Endpoints guarded by the rate limiter (submission or all)",
    )
    offload_blocking: bool = Field(
        default=True,
        description="Offload blocking store and limiter calls to background threads",
    )

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        from logging import getLevelName

        candidate = value.upper()
        resolved = getLevelName(candidate)
        if isinstance(resolved, int):
            return candidate
        raise ValueError(f"Unsupported log level '{value}'")

    @field_validator("solver_backend")
    @classmethod
    def _normalise_solver_backend(cls, value: str) -> str:
        backend = value.lower()
        if backend != "inmemory":
            raise ValueError(f"Unsupported solver backend '{value}'")
        return backend

    @field_validator("store_backend")
    @classmethod
    def _normalise_store_backend(cls, value: str) -> str:
        backend = value.lower()
        if backend not in {"memory", "sqlite"}:
            raise ValueError(f"Unsupported store backend '{value}'")
        return backend

    @field_validator("channel_backend")
    @classmethod
    def _normalise_channel_backend(cls, value: str) -> str:
        backend = value.lower()
        if backend not in {"thread", "celery"}:
            raise ValueError(f"Unsupported channel backend '{value}'")
        return backend

    @field_validator("rate_limit_backend")
    @classmethod
    def _normalise_rate_limit_backend(cls, value: str) -> str:
        backend = value.lower()
        if backend not in {"memory", "redis", "disabled"}:
            raise ValueError(f"Unsupported rate limit backend '{value}'")
        return backend

    @field_validator("rate_limit_scope")
    @classmethod
    def _normalise_rate_limit_scope(cls, value: str) -> str:
        scope = value.lower()
        if scope not in {"submission", "all"}:
            raise ValueError(f"Unsupported rate limit scope '{value}'")
        return scope

    @model_validator(mode="after")
    def _require_redis_url(self) -> "AppConfig":
        if self.rate_limit_backend == "redis" and not self.rate_limit_redis_url:
            raise ValueError("RATE_LIMIT_REDIS_URL must be set when RATE_LIMIT_BACKEND=redis")
        return self

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables (respecting .env)."""
        load_dotenv()
        try:
            raw: dict[str, Any] = {
                "host": os.getenv("HOST", cls.model_fields["host"].default),
                "port": os.getenv("PORT", cls.model_fields["port"].default),
                "log_level": os.getenv("LOG_LEVEL", cls.model_fields["log_level"].default),
                "service_name": os.getenv("SERVICE_NAME", cls.model_fields["service_name"].default),
                "service_version": os.getenv(
                    "SERVICE_VERSION", cls.model_fields["service_version"].default
                ),
                "environment": os.getenv("ENVIRONMENT", cls.model_fields["environment"].default),
                "solver_backend": os.getenv(
                    "SOLVER_BACKEND", cls.model_fields["solver_backend"].default
                ),
                "solver_timeout_seconds": cls._env_to_int(
                    "SOLVER_TIMEOUT_SECONDS", cls.model_fields["solver_timeout_seconds"].default
                ),
                "store_backend": os.getenv(
                    "STORE_BACKEND", cls.model_fields["store_backend"].default
                ),
                "store_path": os.getenv("STORE_PATH", cls.model_fields["store_path"].default),
                "channel_backend": os.getenv(
                    "CHANNEL_BACKEND", cls.model_fields["channel_backend"].default
                ),
                "job_max_retries": cls._env_to_int(
                    "JOB_MAX_RETRIES", cls.model_fields["job_max_retries"].default
                ),
                "job_retry_interval_seconds": cls._env_to_float(
                    "JOB_RETRY_INTERVAL_SECONDS",
                    cls.model_fields["job_retry_interval_seconds"].default,
                ),
                "stale_job_seconds": cls._env_to_int(
                    "STALE_JOB_SECONDS", cls.model_fields["stale_job_seconds"].default
                ),
                "celery_broker_url": os.getenv(
                    "CELERY_BROKER_URL",
                    cls.model_fields["celery_broker_url"].default,
                ),
                "celery_result_backend": os.getenv(
                    "CELERY_RESULT_BACKEND",
                    cls.model_fields["celery_result_backend"].default,
                ),
                "celery_task_always_eager": cls._env_to_bool(
                    "CELERY_TASK_ALWAYS_EAGER",
                    cls.model_fields["celery_task_always_eager"].default,
                ),
                "celery_task_eager_propagates": cls._env_to_bool(
                    "CELERY_TASK_EAGER_PROPAGATES",
                    cls.model_fields["celery_task_eager_propagates"].default,
                ),
                "rate_limit_backend": os.getenv(
                    "RATE_LIMIT_BACKEND", cls.model_fields["rate_limit_backend"].default
                ),
                "rate_limit_redis_url": os.getenv("RATE_LIMIT_REDIS_URL"),
                "rate_limit_requests": cls._env_to_int(
                    "RATE_LIMIT_REQUESTS", cls.model_fields["rate_limit_requests"].default
                ),
                "rate_limit_window_seconds": cls._env_to_int(
                    "RATE_LIMIT_WINDOW_SECONDS",
                    cls.model_fields["rate_limit_window_seconds"].default,
                ),
                "rate_limit_scope": os.getenv(
                    "RATE_LIMIT_SCOPE", cls.model_fields["rate_limit_scope"].default
                ),
                "offload_blocking": cls._env_to_bool(
                    "OFFLOAD_BLOCKING", cls.model_fields["offload_blocking"].default
                ),
            }
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError("Invalid application configuration") from exc

    @staticmethod
    def _env_to_bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None:
            return default
        lowered = raw.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Environment variable {name} must be a boolean expression")

    @staticmethod
    def _env_to_int(name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError as exc:
            raise ValueError(f"Environment variable {name} must be an integer") from exc

    @staticmethod
    def _env_to_float(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError as exc:
            raise ValueError(f"Environment variable {name} must be a number") from exc


def load_config() -> AppConfig:
    """Convenience helper to load configuration with error propagation."""
    return AppConfig.from_env()

"""FastAPI application factory for the procsim service."""

from __future__ import annotations

import time
import uuid
from collections.abc import Awaitable
from typing import Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRouter
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from pydantic import BaseModel
from starlette import status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from .config import AppConfig, load_config
from .constants import CORRELATION_HEADER
from .errors import (
    DetailedHTTPException,
    ErrorCode,
    ErrorDetail,
    default_message,
    error_detail,
    error_response,
    map_status_to_code,
    redact_sensitive,
    validation_errors_to_details,
)
from .logging import DEFAULT_LOG_LEVEL, bind_context, clear_context, get_logger, setup_logging
from .routes import jobs as job_routes
from .routes import simulations as simulation_routes
from .runtime.factory import (
    build_channel,
    build_rate_limiter,
    build_repository,
    should_offload_blocking_calls,
)
from .security.headers import SecurityHeadersMiddleware
from .security.rate_limit import RateLimitMiddleware
from .services.flowsheet import FlowsheetService
from .services.producer import JobProducer
from .services.reconciler import find_stale_jobs

_REQUEST_COUNT = Counter(
    "procsim_http_requests_total",
    "Total HTTP requests processed by the procsim API.",
    ("method", "route", "status_code"),
)
_REQUEST_LATENCY = Histogram(
    "procsim_http_request_duration_seconds",
    "Latency of HTTP requests handled by the procsim API.",
    ("method", "route", "status_code"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
_REQUEST_IN_PROGRESS = Gauge(
    "procsim_http_requests_in_progress",
    "Concurrent HTTP requests being processed by the procsim API.",
    ("method",),
)


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    uptimeSeconds: float
    channelBackend: str
    storeBackend: str


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach correlation IDs and request metadata to the log context."""

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)
        self._logger = get_logger(__name__)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER, str(uuid.uuid4()))
        request.state.correlation_id = correlation_id
        method = request.method.upper()
        _REQUEST_IN_PROGRESS.labels(method=method).inc()
        bind_context(
            correlation_id=correlation_id,
            http_method=request.method,
            http_path=str(request.url.path),
        )
        start = time.perf_counter()
        self._logger.debug("request.start")
        status_code: int | None = None

        try:
            response = await call_next(request)
            status_code = response.status_code
        except Exception as exc:
            self._logger.exception(
                "request.error", durationMs=(time.perf_counter() - start) * 1000
            )
            if isinstance(exc, HTTPException):
                status_code = exc.status_code
            raise
        else:
            response.headers[CORRELATION_HEADER] = correlation_id
            self._logger.info(
                "request.complete",
                status_code=response.status_code,
                durationMs=(time.perf_counter() - start) * 1000,
            )
            return response
        finally:
            status_value = str(status_code or status.HTTP_500_INTERNAL_SERVER_ERROR)
            route = _resolve_route_template(request)
            _REQUEST_LATENCY.labels(method=method, route=route, status_code=status_value).observe(
                time.perf_counter() - start
            )
            _REQUEST_COUNT.labels(method=method, route=route, status_code=status_value).inc()
            _REQUEST_IN_PROGRESS.labels(method=method).dec()
            clear_context("correlation_id", "http_method", "http_path")


def _resolve_route_template(request: Request) -> str:
    """Return the matched route template; the router records it in the scope."""
    route = request.scope.get("route")
    if route is not None:
        template = getattr(route, "path", None)
        if template:
            return template
    return "unmatched"


def _normalise_details(details: object) -> list[ErrorDetail] | None:
    if not details:
        return None
    candidates = details if isinstance(details, list) else [details]
    normalised: list[ErrorDetail] = []
    for item in candidates:
        if isinstance(item, ErrorDetail):
            normalised.append(item)
        elif isinstance(item, dict):
            normalised.append(
                error_detail(
                    issue=str(item.get("issue") or item.get("message") or item),
                    field=item.get("field"),
                    hint=item.get("hint"),
                    code=item.get("code"),
                )
            )
        else:
            normalised.append(error_detail(issue=str(item)))
    return normalised


def create_app(config: AppConfig | None = None, log_level: str | None = None) -> FastAPI:
    """Create the FastAPI application and wire the job pipeline."""
    if config is None:
        config = load_config()

    setup_logging(log_level or config.log_level or DEFAULT_LOG_LEVEL, service=config.service_name)
    logger = get_logger(__name__)

    app = FastAPI(title="procsim", version=config.service_version)
    app.state.config = config
    app.state.started_at = time.monotonic()

    repository = build_repository(config)
    channel = build_channel(config, repository)
    app.state.repository = repository
    app.state.channel = channel
    app.state.producer = JobProducer(repository, channel)
    app.state.flowsheets = FlowsheetService(repository)
    app.state.blocking_offload = should_offload_blocking_calls(config)

    limiter = build_rate_limiter(config)
    app.state.rate_limiter = limiter
    if limiter is not None:
        app.add_middleware(
            RateLimitMiddleware,
            limiter=limiter,
            scope=config.rate_limit_scope,
            offload=app.state.blocking_offload,
        )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    router = APIRouter()

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException) -> Response:
        correlation_id = getattr(request.state, "correlation_id", str(uuid.uuid4()))

        raw_detail = exc.detail
        details = None
        retryable = None
        extra = None
        if isinstance(raw_detail, dict):
            details = raw_detail.get("details")
            message = raw_detail.get("message") or default_message(exc.status_code)
        else:
            message = str(raw_detail) if raw_detail else default_message(exc.status_code)
        message = redact_sensitive(message)

        error_code = map_status_to_code(exc.status_code)
        if isinstance(exc, DetailedHTTPException):
            if exc.error_code:
                error_code = exc.error_code
            if exc.error_details:
                details = exc.error_details
            if exc.retryable_hint is not None:
                retryable = exc.retryable_hint
            extra = exc.extra

        logger.warning(
            "http.error",
            status_code=exc.status_code,
            message=message,
            correlationId=correlation_id,
        )
        return error_response(
            code=error_code,
            message=message,
            correlation_id=correlation_id,
            status_code=exc.status_code,
            retryable=retryable if retryable is not None else False,
            details=_normalise_details(details),
            extra=extra,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> Response:
        correlation_id = getattr(request.state, "correlation_id", str(uuid.uuid4()))
        details = validation_errors_to_details(exc.errors())
        logger.info("http.invalid_request", issues=len(details), correlationId=correlation_id)
        return error_response(
            code=ErrorCode.INVALID_INPUT,
            message=details[0].issue if details else "Validation failed",
            correlation_id=correlation_id,
            status_code=status.HTTP_400_BAD_REQUEST,
            retryable=False,
            details=details,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> Response:
        correlation_id = getattr(request.state, "correlation_id", str(uuid.uuid4()))
        logger.exception("http.unhandled_error", correlationId=correlation_id)
        return error_response(
            code=ErrorCode.INTERNAL_ERROR,
            message="Internal server error",
            correlation_id=correlation_id,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            retryable=False,
        )

    @router.get("/health", response_model=HealthResponse, tags=["health"])
    async def health(request: Request) -> HealthResponse:
        uptime_seconds = time.monotonic() - app.state.started_at
        return HealthResponse(
            uptimeSeconds=uptime_seconds,
            service=config.service_name,
            version=config.service_version,
            channelBackend=config.channel_backend,
            storeBackend=config.store_backend,
        )

    app.include_router(router)
    app.include_router(job_routes.router)
    app.include_router(simulation_routes.router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        payload = generate_latest()
        headers = {"Cache-Control": "no-store"}
        return Response(payload, media_type=CONTENT_TYPE_LATEST, headers=headers)

    @app.on_event("startup")
    async def _startup_event() -> None:
        logger.info(
            "application.startup",
            service=config.service_name,
            version=config.service_version,
            channelBackend=config.channel_backend,
            storeBackend=config.store_backend,
            rateLimitBackend=config.rate_limit_backend,
        )
        find_stale_jobs(repository, config.stale_job_seconds)

    @app.on_event("shutdown")
    async def _shutdown_event() -> None:
        logger.info("application.shutdown", service=config.service_name)
        channel.shutdown()
        repository.close()

    return app

"""Structured logging for the API and the worker processes."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator, MutableMapping, Optional, cast

import structlog

DEFAULT_LOG_LEVEL = "INFO"

_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^/@\s]+@", re.IGNORECASE)


def mask_url_credentials(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Strip ``user:password@`` from broker and Redis URLs before they are rendered."""

    for key, value in event_dict.items():
        if isinstance(value, str) and "@" in value:
            event_dict[key] = _URL_CREDENTIALS.sub(r"\g<scheme>***@", value)
    return event_dict


def _static_fields(**fields: str) -> structlog.types.Processor:
    def add_fields(
        _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_fields


def setup_logging(level: str = DEFAULT_LOG_LEVEL, *, service: Optional[str] = None) -> None:
    """Configure structlog for JSON output with contextvars support.

    ``service`` is stamped on every event so API and worker lines can be told
    apart once they land in the same sink.
    """
    log_level = _coerce_log_level(level)
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if service:
        processors.append(_static_fields(service=service))
    processors.extend(
        [
            structlog.processors.format_exc_info,
            mask_url_credentials,
            structlog.processors.JSONRenderer(),
        ]
    )

    structlog.reset_defaults()
    structlog.configure(
        processors=processors,
        context_class=dict,
        cache_logger_on_first_use=True,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
    )

    logging.basicConfig(level=log_level, format="%(message)s")


def _coerce_log_level(level: str) -> int:
    numeric = logging.getLevelName(level.upper())
    if isinstance(numeric, int):
        return numeric
    return logging.INFO


def get_logger(name: str | None = None) -> structlog.types.FilteringBoundLogger:
    return cast(structlog.types.FilteringBoundLogger, structlog.get_logger(name))


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context(*keys: str) -> None:
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


@contextmanager
def job_context(job_id: str, simulation_id: str) -> Iterator[None]:
    """Bind job identifiers to every log line emitted while a job is processed."""

    bind_context(jobId=job_id, simulationId=simulation_id)
    try:
        yield
    finally:
        clear_context("jobId", "simulationId")

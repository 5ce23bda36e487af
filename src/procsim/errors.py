"""Error utilities and standardized responses."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import Any, Iterable, List, Mapping, Optional

from fastapi import HTTPException
from starlette.responses import JSONResponse

from .constants import CORRELATION_HEADER
from .services.errors import (
    DraftEntityNotFoundError,
    DraftValidationError,
    SimulationConflictError,
    TransientInfrastructureError,
)
from .storage import SimulationNotFoundError, StoreUnavailableError

_SENSITIVE_PATTERN = re.compile(r"(?i)(token|secret|password|key)=([^\s]+)")


class ErrorCode(str, Enum):
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    TIMEOUT = "Timeout"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    INTERNAL_ERROR = "InternalError"


@dataclass(frozen=True)
class ErrorDetail:
    """Structured hint used by clients to self-correct failed requests."""

    issue: str
    field: Optional[str] = None
    hint: Optional[str] = None
    code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"issue": self.issue}
        if self.field:
            payload["field"] = self.field
        if self.hint:
            payload["hint"] = self.hint
        if self.code:
            payload["code"] = self.code
        return payload


class DetailedHTTPException(HTTPException):
    """HTTPException extended with structured error metadata."""

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        code: ErrorCode | None = None,
        retryable: bool | None = None,
        details: Iterable[ErrorDetail] | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.error_code = code
        self.retryable_hint = retryable
        self.error_details: list[ErrorDetail] = list(details or [])
        self.extra: dict[str, Any] = dict(extra or {})


def redact_sensitive(text: str) -> str:
    """Mask obvious secrets in error messages."""
    return _SENSITIVE_PATTERN.sub(lambda m: f"{m.group(1)}=***", text)


def map_status_to_code(status_code: int) -> ErrorCode:
    if status_code == HTTPStatus.BAD_REQUEST:
        return ErrorCode.INVALID_INPUT
    if status_code == HTTPStatus.NOT_FOUND:
        return ErrorCode.NOT_FOUND
    if status_code == HTTPStatus.CONFLICT:
        return ErrorCode.CONFLICT
    if status_code == HTTPStatus.REQUEST_TIMEOUT:
        return ErrorCode.TIMEOUT
    if status_code == HTTPStatus.SERVICE_UNAVAILABLE:
        return ErrorCode.SERVICE_UNAVAILABLE
    return ErrorCode.INTERNAL_ERROR


def error_response(
    *,
    code: ErrorCode,
    message: str,
    correlation_id: str,
    status_code: int,
    retryable: bool | None = None,
    details: Iterable[ErrorDetail] | None = None,
    extra: Mapping[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code.value,
            "message": message,
            "correlationId": correlation_id,
        }
    }
    if retryable is not None:
        payload["error"]["retryable"] = retryable
    if details:
        payload["error"]["details"] = [item.to_dict() for item in details]
    if extra:
        payload.update(extra)

    return JSONResponse(
        status_code=status_code,
        content=payload,
        headers={CORRELATION_HEADER: correlation_id},
    )


def default_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:  # pragma: no cover - defensive
        return "Unexpected Error"


def error_detail(
    issue: str,
    *,
    field: Optional[str] = None,
    hint: Optional[str] = None,
    code: Optional[str] = None,
) -> ErrorDetail:
    """Convenience helper to build an ErrorDetail entry."""

    return ErrorDetail(issue=issue, field=field, hint=hint, code=code)


def join_field(parts: Iterable[Any]) -> Optional[str]:
    """Convert ValidationError locations into dotted field names."""

    formatted = []
    for part in parts:
        if part in {"__root__", "body", None}:
            continue
        formatted.append(str(part))
    if not formatted:
        return None
    return ".".join(formatted)


def validation_errors_to_details(errors: Iterable[Mapping[str, Any]]) -> List[ErrorDetail]:
    """Translate pydantic ValidationError entries into ErrorDetail records."""

    details: list[ErrorDetail] = []
    for item in errors:
        issue = item.get("msg", "Invalid value")
        field = join_field(item.get("loc") or ())
        ctx = item.get("ctx") or {}
        hint = ctx.get("hint")
        code = item.get("type")
        details.append(error_detail(issue=issue, field=field, hint=hint, code=code))
    return details


def http_error(
    *,
    status_code: int,
    message: str,
    code: ErrorCode,
    details: Optional[Iterable[ErrorDetail]] = None,
    field: Optional[str] = None,
    hint: Optional[str] = None,
    retryable: bool | None = None,
    extra: Mapping[str, Any] | None = None,
) -> DetailedHTTPException:
    """Helper to compose DetailedHTTPException with optional detail entries."""

    detail_entries = list(details or [])
    if field or hint:
        detail_entries.append(error_detail(issue=message, field=field, hint=hint))
    return DetailedHTTPException(
        status_code=status_code,
        message=message,
        code=code,
        retryable=retryable,
        details=detail_entries,
        extra=extra,
    )


def domain_error_to_http(exc: Exception) -> DetailedHTTPException:
    """Map job pipeline and drafting exceptions to structured HTTP errors."""

    if isinstance(exc, SimulationNotFoundError):
        return http_error(
            status_code=HTTPStatus.NOT_FOUND,
            message=str(exc),
            code=ErrorCode.NOT_FOUND,
            field="simulationId",
            hint="Create or import the simulation before referencing it.",
        )
    if isinstance(exc, DraftEntityNotFoundError):
        return http_error(
            status_code=HTTPStatus.NOT_FOUND,
            message=str(exc),
            code=ErrorCode.NOT_FOUND,
            field="unitId" if exc.kind == "Unit" else "streamId",
        )
    if isinstance(exc, SimulationConflictError):
        return http_error(
            status_code=HTTPStatus.CONFLICT,
            message=str(exc),
            code=ErrorCode.CONFLICT,
            hint="Poll the job status and retry once the simulation has finished.",
            extra={"currentStatus": exc.current_status.value},
        )
    if isinstance(exc, DraftValidationError):
        return http_error(
            status_code=HTTPStatus.BAD_REQUEST,
            message=str(exc),
            code=ErrorCode.INVALID_INPUT,
            field=exc.field,
        )
    if isinstance(exc, (TransientInfrastructureError, StoreUnavailableError)):
        return http_error(
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            message=redact_sensitive(f"Service temporarily unavailable: {exc}"),
            code=ErrorCode.SERVICE_UNAVAILABLE,
            retryable=True,
        )
    return http_error(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        message="Internal server error",
        code=ErrorCode.INTERNAL_ERROR,
    )


__all__ = [
    "DetailedHTTPException",
    "ErrorCode",
    "ErrorDetail",
    "default_message",
    "domain_error_to_http",
    "error_detail",
    "error_response",
    "http_error",
    "join_field",
    "map_status_to_code",
    "redact_sensitive",
    "validation_errors_to_details",
]

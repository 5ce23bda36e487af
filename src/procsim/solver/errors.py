"""Error types raised across the solver boundary."""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class SolverErrorCode(str, Enum):
    BUILD_FAILED = "BuildFailed"
    SOLVE_FAILED = "SolveFailed"
    COLLECT_FAILED = "CollectFailed"
    TIMEOUT = "Timeout"
    NOT_INITIALISED = "NotInitialised"


class SolverError(RuntimeError):
    """Base error for solver failures."""

    def __init__(
        self,
        code: SolverErrorCode,
        message: str,
        *,
        errors: Sequence[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.errors = list(errors or [])

    def __str__(self) -> str:
        base = f"{self.code.value}: {self.args[0]}"
        if self.errors:
            return f"{base} ({'; '.join(self.errors)})"
        return base


class BuildError(SolverError):
    """Raised when a definition cannot be translated into solver objects."""

    def __init__(self, errors: Sequence[str]) -> None:
        super().__init__(
            SolverErrorCode.BUILD_FAILED,
            "Flowsheet definition could not be built",
            errors=errors,
        )

    @property
    def summary(self) -> str:
        return "; ".join(self.errors) if self.errors else str(self.args[0])

"""Typed interface for flowsheet solver implementations."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..domain.schema import MaterialStreamResult, SimulationDefinition, UnitOperationResult
from ..util.concurrency import CancellationToken


@dataclass(frozen=True)
class SolverConfig:
    max_iterations: int = 100
    tolerance: float = 1e-6


@dataclass
class SolveOutcome:
    converged: bool
    iterations: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def diagnostics(self) -> str:
        if self.errors:
            return "; ".join(self.errors)
        return "Solver did not report convergence"


@dataclass
class CollectedResults:
    material_streams: Dict[str, MaterialStreamResult] = field(default_factory=dict)
    unit_operations: Dict[str, UnitOperationResult] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


class FlowsheetSolver(abc.ABC):
    """Abstract interface for the non-reentrant simulation engine.

    Implementations hold mutable native state between ``build`` and
    ``collect``; callers must serialise access and call ``reset`` before the
    next definition is built.
    """

    def __init__(self, config: SolverConfig | None = None) -> None:
        self.config = config or SolverConfig()

    # Session lifecycle -------------------------------------------------
    @abc.abstractmethod
    def init(self) -> None:
        """Prepare the native engine."""

    @abc.abstractmethod
    def shutdown(self) -> None:
        """Release native resources."""

    @abc.abstractmethod
    def health(self) -> dict[str, object]:
        """Return solver health metadata."""

    # Job pipeline ------------------------------------------------------
    @abc.abstractmethod
    def build(
        self, definition: SimulationDefinition, token: Optional[CancellationToken] = None
    ) -> None:
        """Translate ``definition`` into solver objects or raise ``BuildError``."""

    @abc.abstractmethod
    def solve(self, token: Optional[CancellationToken] = None) -> SolveOutcome:
        """Run the calculation on the built flowsheet."""

    @abc.abstractmethod
    def collect(self) -> CollectedResults:
        """Read back stream and unit operation properties."""

    @abc.abstractmethod
    def reset(self) -> None:
        """Drop all state created by the last ``build``."""


__all__ = ["CollectedResults", "FlowsheetSolver", "SolveOutcome", "SolverConfig"]

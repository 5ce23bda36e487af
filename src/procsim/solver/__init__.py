"""Flowsheet solver boundary."""

from .errors import BuildError, SolverError, SolverErrorCode
from .inmemory import InMemoryFlowsheetSolver
from .interface import CollectedResults, FlowsheetSolver, SolveOutcome, SolverConfig

__all__ = [
    "BuildError",
    "CollectedResults",
    "FlowsheetSolver",
    "InMemoryFlowsheetSolver",
    "SolveOutcome",
    "SolverConfig",
    "SolverError",
    "SolverErrorCode",
]

"""Simulation record store implementations."""

from .repository import (
    KEEP,
    InMemorySimulationRepository,
    SimulationNotFoundError,
    SimulationRepository,
    StaleWriteError,
    StoreUnavailableError,
)
from .sqlite_repository import SqliteSimulationRepository

__all__ = [
    "InMemorySimulationRepository",
    "KEEP",
    "SimulationNotFoundError",
    "SimulationRepository",
    "SqliteSimulationRepository",
    "StaleWriteError",
    "StoreUnavailableError",
]

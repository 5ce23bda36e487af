"""Simulation status state machine."""

from __future__ import annotations

from enum import Enum
from typing import Mapping


class SimulationStatus(str, Enum):
    CREATED = "Created"
    LOADED = "Loaded"
    PENDING = "Pending"
    RUNNING = "Running"
    CONVERGED = "Converged"
    FAILED = "Failed"


IN_FLIGHT = frozenset({SimulationStatus.PENDING, SimulationStatus.RUNNING})
TERMINAL = frozenset({SimulationStatus.CONVERGED, SimulationStatus.FAILED})

_TRANSITIONS: Mapping[SimulationStatus, frozenset[SimulationStatus]] = {
    SimulationStatus.CREATED: frozenset({SimulationStatus.PENDING}),
    SimulationStatus.LOADED: frozenset({SimulationStatus.PENDING}),
    SimulationStatus.PENDING: frozenset({SimulationStatus.RUNNING}),
    SimulationStatus.RUNNING: frozenset({SimulationStatus.CONVERGED, SimulationStatus.FAILED}),
    SimulationStatus.CONVERGED: frozenset({SimulationStatus.PENDING}),
    SimulationStatus.FAILED: frozenset({SimulationStatus.PENDING}),
}


class InvalidTransitionError(RuntimeError):
    """Raised when a status change does not follow the lifecycle graph."""

    def __init__(self, current: SimulationStatus, target: SimulationStatus) -> None:
        super().__init__(f"Cannot move simulation from '{current.value}' to '{target.value}'")
        self.current = current
        self.target = target


def allowed_targets(current: SimulationStatus) -> frozenset[SimulationStatus]:
    return _TRANSITIONS.get(current, frozenset())


def can_transition(current: SimulationStatus, target: SimulationStatus) -> bool:
    return target in allowed_targets(current)


def ensure_transition(current: SimulationStatus, target: SimulationStatus) -> SimulationStatus:
    """Validate ``current -> target`` and return the target status.

    This is the only place the lifecycle edges are encoded. Both the submission
    path and the worker consult it before writing a status.
    """

    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    return target


def is_in_flight(status: SimulationStatus) -> bool:
    return status in IN_FLIGHT


__all__ = [
    "IN_FLIGHT",
    "InvalidTransitionError",
    "SimulationStatus",
    "TERMINAL",
    "allowed_targets",
    "can_transition",
    "ensure_transition",
    "is_in_flight",
]

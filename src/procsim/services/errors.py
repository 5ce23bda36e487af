"""Error types raised by the job pipeline services."""

from __future__ import annotations

from ..domain.status import SimulationStatus


class SimulationConflictError(RuntimeError):
    """Raised when a simulation already has a job in flight or is being edited mid-run."""

    def __init__(self, simulation_id: str, current_status: SimulationStatus, message: str | None = None):
        super().__init__(
            message or f"Simulation is already in {current_status.value} state."
        )
        self.simulation_id = simulation_id
        self.current_status = current_status


class TransientInfrastructureError(RuntimeError):
    """Raised when the broker or the record store is temporarily unavailable.

    The channel retries the delivery a bounded number of times before handing
    the message to its dead-letter handling.
    """


class DraftValidationError(ValueError):
    """Raised when a drafting edit would leave the draft inconsistent."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class DraftEntityNotFoundError(LookupError):
    """Raised when a drafting edit names a unit or stream the simulation does not own."""

    def __init__(self, kind: str, entity_id: str, simulation_id: str) -> None:
        super().__init__(f"{kind} '{entity_id}' not found in simulation '{simulation_id}'")
        self.kind = kind
        self.entity_id = entity_id
        self.simulation_id = simulation_id


__all__ = [
    "DraftEntityNotFoundError",
    "DraftValidationError",
    "SimulationConflictError",
    "TransientInfrastructureError",
]

"""Simulation record store contract and the in-memory implementation."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol

from ..domain.models import SimulationRecord
from ..domain.status import SimulationStatus


class SimulationNotFoundError(KeyError):
    """Raised when a simulation identifier is unknown to the store."""

    def __init__(self, simulation_id: str) -> None:
        super().__init__(simulation_id)
        self.simulation_id = simulation_id

    def __str__(self) -> str:
        return f"Simulation '{self.simulation_id}' not found"


class StoreUnavailableError(RuntimeError):
    """Raised when the backing store cannot be reached or written."""


class StaleWriteError(RuntimeError):
    """Raised when a conditional status write finds another job on the record."""

    def __init__(
        self,
        simulation_id: str,
        expected_job_id: Optional[str],
        actual_job_id: Optional[str],
    ) -> None:
        super().__init__(
            f"Simulation '{simulation_id}' is bound to job '{actual_job_id}', "
            f"expected '{expected_job_id}'"
        )
        self.simulation_id = simulation_id
        self.expected_job_id = expected_job_id
        self.actual_job_id = actual_job_id


class _Keep:
    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return "KEEP"


KEEP: Any = _Keep()


class SimulationRepository(Protocol):
    """Persistence boundary for the simulation aggregate.

    Status writes and definition writes touch disjoint fields, and both stamp
    ``updated_at``; the last writer wins.
    """

    def add(self, record: SimulationRecord) -> SimulationRecord:
        ...

    def get(self, simulation_id: str) -> SimulationRecord:
        ...

    def save_definition(self, record: SimulationRecord) -> SimulationRecord:
        ...

    def update_status(
        self,
        simulation_id: str,
        status: SimulationStatus,
        *,
        error_message: Optional[str] = None,
        result_payload: Any = KEEP,
        job_id: Any = KEEP,
        expected_job_id: Any = KEEP,
    ) -> SimulationRecord:
        ...

    def delete(self, simulation_id: str) -> None:
        ...

    def find_by_status(
        self, statuses: Iterable[SimulationStatus], *, updated_before: float | None = None
    ) -> List[SimulationRecord]:
        ...

    def close(self) -> None:
        ...


class InMemorySimulationRepository:
    """Thread-safe dictionary store used for development and tests."""

    def __init__(self) -> None:
        self._records: Dict[str, SimulationRecord] = {}
        self._lock = threading.RLock()

    def add(self, record: SimulationRecord) -> SimulationRecord:
        with self._lock:
            now = time.time()
            stored = record.clone()
            stored.created_at = stored.created_at or now
            stored.updated_at = now
            self._records[stored.id] = stored
            return stored.clone()

    def get(self, simulation_id: str) -> SimulationRecord:
        with self._lock:
            record = self._records.get(simulation_id)
            if record is None:
                raise SimulationNotFoundError(simulation_id)
            return record.clone()

    def save_definition(self, record: SimulationRecord) -> SimulationRecord:
        with self._lock:
            stored = self._records.get(record.id)
            if stored is None:
                raise SimulationNotFoundError(record.id)
            stored.apply_definition(record.to_definition())
            stored.updated_at = time.time()
            return stored.clone()

    def update_status(
        self,
        simulation_id: str,
        status: SimulationStatus,
        *,
        error_message: Optional[str] = None,
        result_payload: Any = KEEP,
        job_id: Any = KEEP,
        expected_job_id: Any = KEEP,
    ) -> SimulationRecord:
        with self._lock:
            stored = self._records.get(simulation_id)
            if stored is None:
                raise SimulationNotFoundError(simulation_id)
            if expected_job_id is not KEEP and stored.job_id != expected_job_id:
                raise StaleWriteError(simulation_id, expected_job_id, stored.job_id)
            stored.status = status
            stored.error_message = error_message
            if result_payload is not KEEP:
                stored.result_payload = result_payload
            if job_id is not KEEP:
                stored.job_id = job_id
            stored.updated_at = time.time()
            return stored.clone()

    def delete(self, simulation_id: str) -> None:
        with self._lock:
            if self._records.pop(simulation_id, None) is None:
                raise SimulationNotFoundError(simulation_id)

    def find_by_status(
        self, statuses: Iterable[SimulationStatus], *, updated_before: float | None = None
    ) -> List[SimulationRecord]:
        wanted = set(statuses)
        with self._lock:
            matches = [
                record.clone()
                for record in self._records.values()
                if record.status in wanted
                and (updated_before is None or record.updated_at < updated_before)
            ]
        return sorted(matches, key=lambda item: item.id)

    def close(self) -> None:
        with self._lock:
            self._records.clear()


__all__ = [
    "InMemorySimulationRepository",
    "KEEP",
    "SimulationNotFoundError",
    "SimulationRepository",
    "StaleWriteError",
    "StoreUnavailableError",
]

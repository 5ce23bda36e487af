"""Simulation aggregate held by the record store."""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .ids import next_id
from .schema import (
    CompoundDefinition,
    EnergyStreamDefinition,
    FlashAlgorithm,
    JobMessage,
    MaterialStreamDefinition,
    PropertyPackage,
    SimulationDefinition,
    SystemOfUnits,
    UnitOperationDefinition,
)
from .status import SimulationStatus


@dataclass
class SimulationRecord:
    """Aggregate root: draft definition plus pipeline status."""

    id: str
    name: str
    property_package: PropertyPackage = PropertyPackage.PENG_ROBINSON
    flash_algorithm: FlashAlgorithm = FlashAlgorithm.NESTED_LOOPS
    system_of_units: SystemOfUnits = SystemOfUnits.SI
    status: SimulationStatus = SimulationStatus.CREATED
    error_message: Optional[str] = None
    result_payload: Optional[Dict[str, Any]] = None
    job_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    compounds: List[CompoundDefinition] = field(default_factory=list)
    material_streams: List[MaterialStreamDefinition] = field(default_factory=list)
    energy_streams: List[EnergyStreamDefinition] = field(default_factory=list)
    unit_operations: List[UnitOperationDefinition] = field(default_factory=list)

    def to_definition(self) -> SimulationDefinition:
        """Deep snapshot of the editable part of the aggregate."""

        return SimulationDefinition(
            name=self.name,
            property_package=self.property_package,
            flash_algorithm=self.flash_algorithm,
            system_of_units=self.system_of_units,
            compounds=[item.model_copy(deep=True) for item in self.compounds],
            material_streams=[item.model_copy(deep=True) for item in self.material_streams],
            energy_streams=[item.model_copy(deep=True) for item in self.energy_streams],
            unit_operations=[item.model_copy(deep=True) for item in self.unit_operations],
        )

    def apply_definition(self, definition: SimulationDefinition) -> None:
        """Replace the editable part of the aggregate, leaving status untouched."""

        snapshot = definition.model_copy(deep=True)
        self.name = snapshot.name
        self.property_package = snapshot.property_package
        self.flash_algorithm = snapshot.flash_algorithm
        self.system_of_units = snapshot.system_of_units
        self.compounds = list(snapshot.compounds)
        self.material_streams = list(snapshot.material_streams)
        self.energy_streams = list(snapshot.energy_streams)
        self.unit_operations = list(snapshot.unit_operations)

    def clone(self) -> "SimulationRecord":
        return copy.deepcopy(self)

    def find_unit(self, unit_id: str) -> UnitOperationDefinition | None:
        return next((unit for unit in self.unit_operations if unit.id == unit_id), None)

    def find_stream(self, stream_id: str) -> MaterialStreamDefinition | EnergyStreamDefinition | None:
        for stream in self.material_streams:
            if stream.id == stream_id:
                return stream
        for energy in self.energy_streams:
            if energy.id == stream_id:
                return energy
        return None


@dataclass(frozen=True)
class SubmittedJob:
    job_id: str
    simulation_id: str
    status: SimulationStatus


def build_job_message(record: SimulationRecord) -> JobMessage:
    """Snapshot ``record`` into a job message carrying a brand-new job id."""

    return JobMessage(
        job_id=next_id(),
        simulation_id=record.id,
        submitted_at=time.time(),
        definition=record.to_definition(),
    )


def record_from_definition(
    definition: SimulationDefinition,
    *,
    status: SimulationStatus = SimulationStatus.CREATED,
    remap_ids: bool = False,
) -> SimulationRecord:
    """Create a new aggregate from ``definition``.

    With ``remap_ids`` every child receives a fresh identifier and stream
    references on unit operations are rewritten to match.
    """

    record = SimulationRecord(id=next_id(), name=definition.name, status=status)
    record.apply_definition(definition)
    if remap_ids:
        _remap_child_ids(record)
    return record


def _remap_child_ids(record: SimulationRecord) -> None:
    mapping: dict[str, str] = {}
    for collection in (record.compounds, record.material_streams, record.energy_streams):
        for item in collection:
            fresh = next_id()
            mapping[item.id] = fresh
            item.id = fresh
    for unit in record.unit_operations:
        unit.id = next_id()
        # References to streams absent from the definition are dropped.
        unit.input_stream_ids = [mapping[ref] for ref in unit.input_stream_ids if ref in mapping]
        unit.output_stream_ids = [mapping[ref] for ref in unit.output_stream_ids if ref in mapping]


__all__ = [
    "SimulationRecord",
    "SubmittedJob",
    "build_job_message",
    "record_from_definition",
]

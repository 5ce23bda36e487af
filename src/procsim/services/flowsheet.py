"""Drafting operations on simulation records."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, TypeVar

from ..domain.ids import next_id
from ..domain.models import SimulationRecord, record_from_definition
from ..domain.schema import (
    CompoundDefinition,
    EnergyStreamDefinition,
    FlashAlgorithm,
    MaterialStreamDefinition,
    PortType,
    PropertyPackage,
    SimulationDefinition,
    SystemOfUnits,
    UnitOperationDefinition,
    UnitOperationType,
)
from ..domain.status import SimulationStatus, is_in_flight
from ..logging import get_logger
from ..storage import SimulationRepository
from .errors import DraftEntityNotFoundError, DraftValidationError, SimulationConflictError

logger = get_logger(__name__)

T = TypeVar("T")


class FlowsheetService:
    """Create, edit, export and import simulation drafts.

    Edits are refused while a job is in flight for the record; definition
    writes never touch the status columns.
    """

    def __init__(self, repository: SimulationRepository) -> None:
        self._repository = repository

    # Records ------------------------------------------------------------

    def create(
        self,
        name: str,
        *,
        property_package: PropertyPackage = PropertyPackage.PENG_ROBINSON,
        flash_algorithm: FlashAlgorithm = FlashAlgorithm.NESTED_LOOPS,
        system_of_units: SystemOfUnits = SystemOfUnits.SI,
    ) -> SimulationRecord:
        definition = SimulationDefinition(
            name=name,
            property_package=property_package,
            flash_algorithm=flash_algorithm,
            system_of_units=system_of_units,
        )
        record = self._repository.add(record_from_definition(definition))
        logger.info("simulation.created", simulationId=record.id, name=record.name)
        return record

    def get(self, simulation_id: str) -> SimulationRecord:
        return self._repository.get(simulation_id)

    def delete(self, simulation_id: str) -> None:
        record = self._repository.get(simulation_id)
        self._ensure_editable(record)
        self._repository.delete(simulation_id)
        logger.info("simulation.deleted", simulationId=simulation_id)

    def export(self, simulation_id: str) -> SimulationDefinition:
        return self._repository.get(simulation_id).to_definition()

    def import_definition(self, definition: SimulationDefinition) -> SimulationRecord:
        """Store ``definition`` as a new ``Loaded`` record with fresh identifiers."""

        record = record_from_definition(
            definition, status=SimulationStatus.LOADED, remap_ids=True
        )
        stored = self._repository.add(record)
        logger.info(
            "simulation.imported",
            simulationId=stored.id,
            streams=len(stored.material_streams),
            units=len(stored.unit_operations),
            compounds=len(stored.compounds),
        )
        return stored

    # Children -----------------------------------------------------------

    def add_compound(
        self,
        simulation_id: str,
        name: str,
        *,
        constant_properties: Optional[Dict[str, float]] = None,
    ) -> CompoundDefinition:
        def apply(record: SimulationRecord) -> CompoundDefinition:
            if any(item.name == name for item in record.compounds):
                raise DraftValidationError(
                    f"Compound '{name}' is already part of the simulation", field="name"
                )
            compound = CompoundDefinition(
                id=next_id(), name=name, constant_properties=dict(constant_properties or {})
            )
            record.compounds.append(compound)
            return compound

        compound = self._mutate(simulation_id, apply)
        logger.info("simulation.compound_added", simulationId=simulation_id, compoundId=compound.id)
        return compound

    def add_material_stream(
        self,
        simulation_id: str,
        name: str,
        *,
        temperature: float = 298.15,
        pressure: float = 101325.0,
        mass_flow: float = 0.0,
        molar_compositions: Optional[Dict[str, float]] = None,
        phase: Optional[str] = None,
    ) -> MaterialStreamDefinition:
        def apply(record: SimulationRecord) -> MaterialStreamDefinition:
            self._ensure_unique_stream_name(record, name)
            stream = MaterialStreamDefinition(
                id=next_id(),
                name=name,
                temperature=temperature,
                pressure=pressure,
                mass_flow=mass_flow,
                molar_compositions=dict(molar_compositions or {}),
                phase=phase,
            )
            record.material_streams.append(stream)
            return stream

        stream = self._mutate(simulation_id, apply)
        logger.info("simulation.stream_added", simulationId=simulation_id, streamId=stream.id)
        return stream

    def add_energy_stream(
        self, simulation_id: str, name: str, *, energy_flow: float = 0.0
    ) -> EnergyStreamDefinition:
        def apply(record: SimulationRecord) -> EnergyStreamDefinition:
            self._ensure_unique_stream_name(record, name)
            stream = EnergyStreamDefinition(id=next_id(), name=name, energy_flow=energy_flow)
            record.energy_streams.append(stream)
            return stream

        stream = self._mutate(simulation_id, apply)
        logger.info(
            "simulation.energy_stream_added", simulationId=simulation_id, streamId=stream.id
        )
        return stream

    def add_unit_operation(
        self,
        simulation_id: str,
        name: str,
        unit_type: UnitOperationType,
        *,
        config_params: Optional[Dict[str, Any]] = None,
    ) -> UnitOperationDefinition:
        def apply(record: SimulationRecord) -> UnitOperationDefinition:
            if any(unit.name == name for unit in record.unit_operations):
                raise DraftValidationError(
                    f"Unit operation '{name}' already exists in the simulation", field="name"
                )
            unit = UnitOperationDefinition(
                id=next_id(),
                name=name,
                type=unit_type,
                config_params=dict(config_params or {}),
            )
            record.unit_operations.append(unit)
            return unit

        unit = self._mutate(simulation_id, apply)
        logger.info(
            "simulation.unit_added",
            simulationId=simulation_id,
            unitId=unit.id,
            unitType=unit.type.value,
        )
        return unit

    def connect(
        self, simulation_id: str, unit_id: str, stream_id: str, port_type: PortType
    ) -> UnitOperationDefinition:
        """Attach a stream to a unit inlet or outlet; repeating a connection is a no-op."""

        def apply(record: SimulationRecord) -> UnitOperationDefinition:
            unit = record.find_unit(unit_id)
            if unit is None:
                raise DraftEntityNotFoundError("Unit", unit_id, simulation_id)
            if record.find_stream(stream_id) is None:
                raise DraftEntityNotFoundError("Stream", stream_id, simulation_id)
            if port_type == PortType.INLET:
                ports, opposite = unit.input_stream_ids, unit.output_stream_ids
            else:
                ports, opposite = unit.output_stream_ids, unit.input_stream_ids
            if stream_id in opposite:
                raise DraftValidationError(
                    f"Stream '{stream_id}' is already connected to the other side of "
                    f"unit '{unit.name}'",
                    field="portType",
                )
            if stream_id not in ports:
                ports.append(stream_id)
            return unit.model_copy(deep=True)

        unit = self._mutate(simulation_id, apply)
        logger.info(
            "simulation.stream_connected",
            simulationId=simulation_id,
            unitId=unit_id,
            streamId=stream_id,
            portType=port_type.value,
        )
        return unit

    # Helpers ------------------------------------------------------------

    def _mutate(self, simulation_id: str, apply: Callable[[SimulationRecord], T]) -> T:
        record = self._repository.get(simulation_id)
        self._ensure_editable(record)
        result = apply(record)
        self._repository.save_definition(record)
        return result

    @staticmethod
    def _ensure_editable(record: SimulationRecord) -> None:
        if is_in_flight(record.status):
            raise SimulationConflictError(
                record.id,
                record.status,
                f"Simulation cannot be modified while it is {record.status.value}.",
            )

    @staticmethod
    def _ensure_unique_stream_name(record: SimulationRecord, name: str) -> None:
        names = {stream.name for stream in record.material_streams}
        names.update(stream.name for stream in record.energy_streams)
        if name in names:
            raise DraftValidationError(
                f"Stream '{name}' already exists in the simulation", field="name"
            )


__all__ = ["FlowsheetService"]

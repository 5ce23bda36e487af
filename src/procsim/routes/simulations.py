"""Drafting endpoints: build, inspect, export and import simulations."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, TypeVar

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import Field

from ..dependencies import get_flowsheet_service, should_offload_blocking
from ..domain.models import SimulationRecord
from ..domain.schema import (
    CamelModel,
    FlashAlgorithm,
    PortType,
    PropertyPackage,
    SimulationDefinition,
    SystemOfUnits,
    UnitOperationType,
)
from ..errors import domain_error_to_http
from ..logging import get_logger
from ..services.errors import (
    DraftEntityNotFoundError,
    DraftValidationError,
    SimulationConflictError,
    TransientInfrastructureError,
)
from ..services.flowsheet import FlowsheetService
from ..storage import SimulationNotFoundError, StoreUnavailableError
from ..util.concurrency import maybe_to_thread

router = APIRouter(prefix="/simulations", tags=["simulations"])
logger = get_logger(__name__)

T = TypeVar("T")

_DOMAIN_ERRORS = (
    SimulationNotFoundError,
    SimulationConflictError,
    DraftEntityNotFoundError,
    DraftValidationError,
    TransientInfrastructureError,
    StoreUnavailableError,
)
_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]+")


class CreateSimulationRequest(CamelModel):
    name: str = Field(min_length=1)
    property_package: PropertyPackage = PropertyPackage.PENG_ROBINSON
    flash_algorithm: FlashAlgorithm = FlashAlgorithm.NESTED_LOOPS
    system_of_units: SystemOfUnits = SystemOfUnits.SI


class AddCompoundRequest(CamelModel):
    name: str = Field(min_length=1)
    constant_properties: Dict[str, float] = Field(default_factory=dict)


class AddStreamRequest(CamelModel):
    name: str = Field(min_length=1)
    temperature: float = Field(default=298.15, gt=0)
    pressure: float = Field(default=101325.0, gt=0)
    mass_flow: float = 0.0
    molar_compositions: Dict[str, float] = Field(default_factory=dict)
    phase: Optional[str] = None


class AddEnergyStreamRequest(CamelModel):
    name: str = Field(min_length=1)
    energy_flow: float = 0.0


class AddUnitRequest(CamelModel):
    name: str = Field(min_length=1)
    type: UnitOperationType
    config_params: Dict[str, Any] = Field(default_factory=dict)


class ConnectStreamRequest(CamelModel):
    unit_id: str
    stream_id: str
    port_type: PortType


def _to_iso(timestamp: float) -> str:
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")


def _record_view(record: SimulationRecord) -> dict[str, Any]:
    definition = record.to_definition().model_dump(mode="json", by_alias=True)
    return {
        "id": record.id,
        **definition,
        "status": record.status.value,
        "errorMessage": record.error_message,
        "createdAt": _to_iso(record.created_at),
        "updatedAt": _to_iso(record.updated_at),
    }


async def _call(request: Request, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    try:
        return await maybe_to_thread(should_offload_blocking(request), func, *args, **kwargs)
    except _DOMAIN_ERRORS as exc:
        logger.info("simulation.request_rejected", reason=str(exc), errorType=type(exc).__name__)
        raise domain_error_to_http(exc) from exc


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_simulation(
    payload: CreateSimulationRequest,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    record = await _call(
        request,
        service.create,
        payload.name,
        property_package=payload.property_package,
        flash_algorithm=payload.flash_algorithm,
        system_of_units=payload.system_of_units,
    )
    return {"id": record.id, "name": record.name, "status": record.status.value}


@router.post("/import", status_code=status.HTTP_201_CREATED)
async def import_simulation(
    payload: SimulationDefinition,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    record = await _call(request, service.import_definition, payload)
    return {
        "id": record.id,
        "name": record.name,
        "status": record.status.value,
        "importedStreams": len(record.material_streams),
        "importedUnits": len(record.unit_operations),
        "importedCompounds": len(record.compounds),
    }


@router.get("/{simulation_id}")
async def get_simulation(
    simulation_id: str,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    record = await _call(request, service.get, simulation_id)
    return _record_view(record)


@router.delete("/{simulation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_simulation(
    simulation_id: str,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> Response:
    await _call(request, service.delete, simulation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{simulation_id}/compounds", status_code=status.HTTP_201_CREATED)
async def add_compound(
    simulation_id: str,
    payload: AddCompoundRequest,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    compound = await _call(
        request,
        service.add_compound,
        simulation_id,
        payload.name,
        constant_properties=payload.constant_properties,
    )
    return {"compoundId": compound.id, "name": compound.name}


@router.post("/{simulation_id}/streams", status_code=status.HTTP_201_CREATED)
async def add_stream(
    simulation_id: str,
    payload: AddStreamRequest,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    stream = await _call(
        request,
        service.add_material_stream,
        simulation_id,
        payload.name,
        temperature=payload.temperature,
        pressure=payload.pressure,
        mass_flow=payload.mass_flow,
        molar_compositions=payload.molar_compositions,
        phase=payload.phase,
    )
    return {
        "streamId": stream.id,
        "name": stream.name,
        "temperature": stream.temperature,
        "pressure": stream.pressure,
        "massFlow": stream.mass_flow,
    }


@router.post("/{simulation_id}/energy_streams", status_code=status.HTTP_201_CREATED)
async def add_energy_stream(
    simulation_id: str,
    payload: AddEnergyStreamRequest,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    stream = await _call(
        request,
        service.add_energy_stream,
        simulation_id,
        payload.name,
        energy_flow=payload.energy_flow,
    )
    return {"streamId": stream.id, "name": stream.name, "energyFlow": stream.energy_flow}


@router.post("/{simulation_id}/units", status_code=status.HTTP_201_CREATED)
async def add_unit(
    simulation_id: str,
    payload: AddUnitRequest,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    unit = await _call(
        request,
        service.add_unit_operation,
        simulation_id,
        payload.name,
        payload.type,
        config_params=payload.config_params,
    )
    return {"unitId": unit.id, "name": unit.name, "type": unit.type.value}


@router.put("/{simulation_id}/connect")
async def connect_stream(
    simulation_id: str,
    payload: ConnectStreamRequest,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> dict[str, Any]:
    unit = await _call(
        request,
        service.connect,
        simulation_id,
        payload.unit_id,
        payload.stream_id,
        payload.port_type,
    )
    return {
        "unitId": unit.id,
        "streamId": payload.stream_id,
        "portType": payload.port_type.value,
        "inputStreamIds": unit.input_stream_ids,
        "outputStreamIds": unit.output_stream_ids,
    }


@router.get("/{simulation_id}/export")
async def export_simulation(
    simulation_id: str,
    request: Request,
    service: FlowsheetService = Depends(get_flowsheet_service),
) -> JSONResponse:
    definition = await _call(request, service.export, simulation_id)
    filename = _UNSAFE_FILENAME.sub("_", definition.name).strip("_") or "simulation"
    return JSONResponse(
        content=definition.model_dump(mode="json", by_alias=True),
        headers={"Content-Disposition": f'attachment; filename="{filename}.json"'},
    )


__all__ = ["router"]

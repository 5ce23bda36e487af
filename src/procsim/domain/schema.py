"""Pydantic models for flowsheet definitions, job messages and solver results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _to_camel(string: str) -> str:
    parts = string.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True)


class PropertyPackage(str, Enum):
    PENG_ROBINSON = "PengRobinson"
    SOAVE_REDLICH_KWONG = "SoaveRedlichKwong"
    PRSV2 = "PRSV2"
    NRTL = "NRTL"
    UNIQUAC = "UNIQUAC"
    UNIFAC = "UNIFAC"
    CHAO_SEADER = "ChaoSeader"
    GRAYSON_STREED = "GraysonStreed"
    RAOULTS_LAW = "RaoultsLaw"
    STEAM_TABLES = "SteamTables"
    COOLPROP = "CoolProp"


class FlashAlgorithm(str, Enum):
    NESTED_LOOPS = "NestedLoops"
    INSIDE_OUT = "InsideOut"
    INSIDE_OUT_3_PHASE = "InsideOut3Phase"
    GIBBS_MINIMIZATION_3_PHASE = "GibbsMinimization3Phase"
    NESTED_LOOPS_3_PHASE = "NestedLoops3Phase"
    SOLID_LIQUID_EQUILIBRIUM = "SolidLiquidEquilibrium"
    IMMISCIBLE_LLE = "ImmiscibleLLE"
    SIMPLE_LLE = "SimpleLLE"
    SVLLE = "SVLLE"
    UNIVERSAL = "Universal"


class SystemOfUnits(str, Enum):
    SI = "SI"
    CGS = "CGS"
    ENGLISH = "English"


class UnitOperationType(str, Enum):
    MIXER = "Mixer"
    SPLITTER = "Splitter"
    SEPARATOR = "Separator"
    TANK = "Tank"
    PIPE = "Pipe"
    VALVE = "Valve"
    PUMP = "Pump"
    COMPRESSOR = "Compressor"
    EXPANDER = "Expander"
    HEATER = "Heater"
    COOLER = "Cooler"
    HEAT_EXCHANGER = "HeatExchanger"
    REACTOR_CONVERSION = "ReactorConversion"
    REACTOR_EQUILIBRIUM = "ReactorEquilibrium"
    REACTOR_GIBBS = "ReactorGibbs"
    REACTOR_CSTR = "ReactorCSTR"
    REACTOR_PFR = "ReactorPFR"
    DISTILLATION_COLUMN = "DistillationColumn"
    ABSORPTION_COLUMN = "AbsorptionColumn"
    COMPONENT_SEPARATOR = "ComponentSeparator"


class PortType(str, Enum):
    INLET = "Inlet"
    OUTLET = "Outlet"


class FailureKind(str, Enum):
    BUILD_FAILURE = "BuildFailure"
    SOLVE_FAILURE = "SolveFailure"
    TIMEOUT = "Timeout"
    INTERNAL_ERROR = "InternalError"


# Definition snapshot ----------------------------------------------------


class CompoundDefinition(CamelModel):
    id: str
    name: str
    constant_properties: Dict[str, float] = Field(default_factory=dict)


class MaterialStreamDefinition(CamelModel):
    id: str
    name: str
    temperature: float = Field(default=298.15, gt=0, description="Temperature in K")
    pressure: float = Field(default=101325.0, gt=0, description="Pressure in Pa")
    mass_flow: float = Field(default=0.0, description="Mass flow in kg/s")
    molar_compositions: Dict[str, float] = Field(default_factory=dict)
    phase: Optional[str] = None


class EnergyStreamDefinition(CamelModel):
    id: str
    name: str
    energy_flow: float = Field(default=0.0, description="Energy flow in W")


class UnitOperationDefinition(CamelModel):
    id: str
    name: str
    type: UnitOperationType
    input_stream_ids: List[str] = Field(default_factory=list)
    output_stream_ids: List[str] = Field(default_factory=list)
    config_params: Dict[str, Any] = Field(default_factory=dict)


class SimulationDefinition(CamelModel):
    name: str
    property_package: PropertyPackage = PropertyPackage.PENG_ROBINSON
    flash_algorithm: FlashAlgorithm = FlashAlgorithm.NESTED_LOOPS
    system_of_units: SystemOfUnits = SystemOfUnits.SI
    compounds: List[CompoundDefinition] = Field(default_factory=list)
    material_streams: List[MaterialStreamDefinition] = Field(default_factory=list)
    energy_streams: List[EnergyStreamDefinition] = Field(default_factory=list)
    unit_operations: List[UnitOperationDefinition] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Simulation name must not be empty")
        return trimmed


class JobMessage(CamelModel):
    """Immutable unit of work handed from the producer to a worker."""

    model_config = ConfigDict(alias_generator=_to_camel, populate_by_name=True, frozen=True)

    job_id: str
    simulation_id: str
    submitted_at: float
    definition: SimulationDefinition

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, payload: dict[str, Any]) -> "JobMessage":
        return cls.model_validate(payload)


# Results ------------------------------------------------------------------


class MaterialStreamResult(CamelModel):
    temperature: Optional[float] = None
    pressure: Optional[float] = None
    mass_flow: Optional[float] = None
    molar_compositions: Dict[str, float] = Field(default_factory=dict)
    phase: Optional[str] = None


class UnitOperationResult(CamelModel):
    calculated: bool = False
    error_message: Optional[str] = None
    additional_properties: Dict[str, float] = Field(default_factory=dict)


class SimulationResult(CamelModel):
    job_id: Optional[str] = None
    success: bool
    error_message: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    material_streams: Dict[str, MaterialStreamResult] = Field(default_factory=dict)
    unit_operations: Dict[str, UnitOperationResult] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
    elapsed_seconds: Optional[float] = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def failure(
        cls,
        *,
        job_id: str,
        kind: FailureKind,
        message: str,
        warnings: Optional[List[str]] = None,
    ) -> "SimulationResult":
        return cls(
            job_id=job_id,
            success=False,
            error_message=message,
            failure_kind=kind,
            warnings=list(warnings or []),
        )


__all__ = [
    "CamelModel",
    "CompoundDefinition",
    "EnergyStreamDefinition",
    "FailureKind",
    "FlashAlgorithm",
    "JobMessage",
    "MaterialStreamDefinition",
    "MaterialStreamResult",
    "PortType",
    "PropertyPackage",
    "SimulationDefinition",
    "SimulationResult",
    "SystemOfUnits",
    "UnitOperationDefinition",
    "UnitOperationResult",
    "UnitOperationType",
]

"""Sequential-modular reference solver.

Units are calculated in topological order of the stream graph. When the graph
contains a recycle, the cyclic units are iterated by direct substitution until
the recycled streams stop changing or ``max_iterations`` is reached. Physical
models are deliberately simple (ideal mixing, constant heat capacity) and exist
to exercise the job pipeline end to end.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..domain.schema import (
    MaterialStreamResult,
    SimulationDefinition,
    UnitOperationDefinition,
    UnitOperationResult,
    UnitOperationType,
)
from ..logging import get_logger
from ..util.concurrency import CancellationToken
from .errors import BuildError, SolverError, SolverErrorCode
from .interface import CollectedResults, FlowsheetSolver, SolveOutcome, SolverConfig

logger = get_logger(__name__)

_COMPOSITION_TOLERANCE = 1e-3
_DEFAULT_HEAT_CAPACITY = 4184.0


@dataclass
class StreamState:
    temperature: float
    pressure: float
    mass_flow: float
    compositions: Dict[str, float] = field(default_factory=dict)
    phase: Optional[str] = None


@dataclass
class _BuiltUnit:
    definition: UnitOperationDefinition
    model: "_UnitModel"
    inlets: List[str]
    outlets: List[str]
    energy_inlets: List[str]
    energy_outlets: List[str]
    calculated: bool = False
    error: Optional[str] = None
    properties: Dict[str, float] = field(default_factory=dict)


class _CalculationError(ValueError):
    """Raised by a unit model when its inputs are physically inconsistent."""


_Calculator = Callable[["_UnitContext"], Tuple[List[StreamState], Dict[str, float]]]


@dataclass(frozen=True)
class _UnitModel:
    calculate: _Calculator
    inlets: Tuple[int, Optional[int]]
    outlets: Tuple[int, Optional[int]]
    numeric_params: Tuple[str, ...] = ()
    requires_one_of: Tuple[str, ...] = ()


@dataclass
class _UnitContext:
    name: str
    params: Dict[str, Any]
    inlets: List[StreamState]
    outlet_count: int
    energy_in: float
    molecular_weights: Dict[str, float]

    def number(self, key: str, default: Optional[float] = None) -> Optional[float]:
        value = self.params.get(key)
        if value is None:
            return default
        return float(value)

    def require(self, key: str) -> float:
        value = self.number(key)
        if value is None:
            raise _CalculationError(f"{key} is required")
        return value


# Unit models ----------------------------------------------------------------


def _blend(inlets: Sequence[StreamState], molecular_weights: Dict[str, float]) -> StreamState:
    total = sum(stream.mass_flow for stream in inlets)
    pressure = min(stream.pressure for stream in inlets)
    if total <= 0:
        first = inlets[0]
        return StreamState(first.temperature, pressure, 0.0, dict(first.compositions))

    temperature = sum(s.temperature * s.mass_flow for s in inlets) / total
    names = sorted({name for stream in inlets for name in stream.compositions})
    molar = bool(names) and all(name in molecular_weights for name in names)
    moles: Dict[str, float] = {name: 0.0 for name in names}
    for stream in inlets:
        if molar:
            mixture_weight = sum(
                fraction * molecular_weights[name] for name, fraction in stream.compositions.items()
            )
            weight = stream.mass_flow / mixture_weight if mixture_weight > 0 else 0.0
        else:
            weight = stream.mass_flow
        for name, fraction in stream.compositions.items():
            moles[name] += fraction * weight
    total_moles = sum(moles.values())
    compositions = (
        {name: amount / total_moles for name, amount in moles.items()} if total_moles > 0 else {}
    )
    return StreamState(temperature, pressure, total, compositions)


def _mixer(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
    outlet = _blend(ctx.inlets, ctx.molecular_weights)
    return [outlet], {"massFlow": outlet.mass_flow}


def _splitter(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
    feed = ctx.inlets[0]
    ratios = ctx.params.get("splitRatios")
    if ratios is None:
        ratios = [1.0 / ctx.outlet_count] * ctx.outlet_count
    fractions = [float(value) for value in ratios]
    outlets = [replace(feed, mass_flow=feed.mass_flow * fraction) for fraction in fractions]
    return outlets, {f"splitRatio{index + 1}": value for index, value in enumerate(fractions)}


def _separator(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
    feed = _blend(ctx.inlets, ctx.molecular_weights)
    vapor_fraction = ctx.number("vaporFraction")
    if vapor_fraction is None:
        vapor_fraction = 0.5
    vapor = replace(feed, mass_flow=feed.mass_flow * vapor_fraction, phase="Vapor")
    liquid = replace(feed, mass_flow=feed.mass_flow * (1 - vapor_fraction), phase="Liquid")
    return [vapor, liquid], {"vaporFraction": vapor_fraction}


def _tank(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
    return [replace(ctx.inlets[0])], {}


def _pipe(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
    feed = ctx.inlets[0]
    drop = ctx.number("pressureDrop", 0.0) or 0.0
    outlet_pressure = feed.pressure - drop
    if outlet_pressure <= 0:
        raise _CalculationError(f"pressure drop of {drop} Pa exceeds inlet pressure")
    return [replace(feed, pressure=outlet_pressure)], {"pressureDrop": drop}


def _valve(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
    feed = ctx.inlets[0]
    outlet_pressure = ctx.number("outletPressure")
    if outlet_pressure is None:
        outlet_pressure = feed.pressure - (ctx.number("pressureDrop", 0.0) or 0.0)
    if outlet_pressure <= 0:
        raise _CalculationError("outlet pressure must be positive")
    if outlet_pressure > feed.pressure:
        raise _CalculationError(
            f"outlet pressure {outlet_pressure} Pa exceeds inlet pressure {feed.pressure} Pa"
        )
    return [replace(feed, pressure=outlet_pressure)], {
        "pressureDrop": feed.pressure - outlet_pressure
    }


def _pressure_changer(increase: bool) -> _Calculator:
    def calculate(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
        feed = ctx.inlets[0]
        outlet_pressure = ctx.number("outletPressure")
        if outlet_pressure is None:
            delta = ctx.number("deltaP", 0.0) or 0.0
            outlet_pressure = feed.pressure + delta if increase else feed.pressure - delta
        delta_p = outlet_pressure - feed.pressure
        if increase and delta_p < 0:
            raise _CalculationError("outlet pressure is below inlet pressure")
        if not increase and delta_p > 0:
            raise _CalculationError("outlet pressure is above inlet pressure")
        if outlet_pressure <= 0:
            raise _CalculationError("outlet pressure must be positive")
        efficiency = ctx.number("efficiency", 0.75) or 0.75
        density = ctx.number("density", 1000.0) or 1000.0
        ideal_power = feed.mass_flow * abs(delta_p) / density
        power = ideal_power / efficiency if increase else ideal_power * efficiency
        return [replace(feed, pressure=outlet_pressure)], {
            "deltaP": delta_p,
            "power": power,
            "efficiency": efficiency,
        }

    return calculate


def _heat_exchange(heating: bool) -> _Calculator:
    def calculate(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
        feed = ctx.inlets[0]
        heat_capacity = ctx.number("heatCapacity", _DEFAULT_HEAT_CAPACITY) or _DEFAULT_HEAT_CAPACITY
        capacity_rate = feed.mass_flow * heat_capacity
        outlet_temperature = ctx.number("outletTemperature")
        duty = ctx.number("heatDuty")
        if outlet_temperature is None and duty is None and ctx.energy_in:
            duty = ctx.energy_in
        if outlet_temperature is None:
            if duty is None:
                raise _CalculationError("either outletTemperature or heatDuty is required")
            if capacity_rate <= 0:
                raise _CalculationError("heat duty cannot be applied to a stream without flow")
            signed = duty if heating else -duty
            outlet_temperature = feed.temperature + signed / capacity_rate
        else:
            duty = abs(capacity_rate * (outlet_temperature - feed.temperature))
        if heating and outlet_temperature < feed.temperature:
            raise _CalculationError("outlet temperature is below inlet temperature")
        if not heating and outlet_temperature > feed.temperature:
            raise _CalculationError("outlet temperature is above inlet temperature")
        if outlet_temperature <= 0:
            raise _CalculationError("outlet temperature must be above absolute zero")
        drop = ctx.number("pressureDrop", 0.0) or 0.0
        outlet = replace(feed, temperature=outlet_temperature, pressure=feed.pressure - drop)
        return [outlet], {"heatDuty": duty, "outletTemperature": outlet_temperature}

    return calculate


def _heat_exchanger(ctx: _UnitContext) -> Tuple[List[StreamState], Dict[str, float]]:
    hot, cold = ctx.inlets[0], ctx.inlets[1]
    hot_outlet = ctx.require("hotOutletTemperature")
    hot_cp = ctx.number("hotHeatCapacity", _DEFAULT_HEAT_CAPACITY) or _DEFAULT_HEAT_CAPACITY
    cold_cp = ctx.number("coldHeatCapacity", _DEFAULT_HEAT_CAPACITY) or _DEFAULT_HEAT_CAPACITY
    if hot_outlet > hot.temperature:
        raise _CalculationError("hot outlet temperature exceeds hot inlet temperature")
    duty = hot.mass_flow * hot_cp * (hot.temperature - hot_outlet)
    if cold.mass_flow <= 0:
        raise _CalculationError("cold side has no flow")
    cold_outlet = cold.temperature + duty / (cold.mass_flow * cold_cp)
    if cold_outlet > hot.temperature:
        raise _CalculationError("temperature cross between hot inlet and cold outlet")
    return [
        replace(hot, temperature=hot_outlet),
        replace(cold, temperature=cold_outlet),
    ], {"heatDuty": duty}


_UNIT_MODELS: Dict[UnitOperationType, _UnitModel] = {
    UnitOperationType.MIXER: _UnitModel(_mixer, inlets=(1, None), outlets=(1, 1)),
    UnitOperationType.SPLITTER: _UnitModel(_splitter, inlets=(1, 1), outlets=(1, None)),
    UnitOperationType.SEPARATOR: _UnitModel(
        _separator, inlets=(1, None), outlets=(2, 2), numeric_params=("vaporFraction",)
    ),
    UnitOperationType.TANK: _UnitModel(_tank, inlets=(1, 1), outlets=(1, 1)),
    UnitOperationType.PIPE: _UnitModel(
        _pipe, inlets=(1, 1), outlets=(1, 1), numeric_params=("pressureDrop",)
    ),
    UnitOperationType.VALVE: _UnitModel(
        _valve,
        inlets=(1, 1),
        outlets=(1, 1),
        numeric_params=("outletPressure", "pressureDrop"),
        requires_one_of=("outletPressure", "pressureDrop"),
    ),
    UnitOperationType.PUMP: _UnitModel(
        _pressure_changer(increase=True),
        inlets=(1, 1),
        outlets=(1, 1),
        numeric_params=("outletPressure", "deltaP", "efficiency", "density"),
        requires_one_of=("outletPressure", "deltaP"),
    ),
    UnitOperationType.COMPRESSOR: _UnitModel(
        _pressure_changer(increase=True),
        inlets=(1, 1),
        outlets=(1, 1),
        numeric_params=("outletPressure", "deltaP", "efficiency", "density"),
        requires_one_of=("outletPressure", "deltaP"),
    ),
    UnitOperationType.EXPANDER: _UnitModel(
        _pressure_changer(increase=False),
        inlets=(1, 1),
        outlets=(1, 1),
        numeric_params=("outletPressure", "deltaP", "efficiency", "density"),
        requires_one_of=("outletPressure", "deltaP"),
    ),
    UnitOperationType.HEATER: _UnitModel(
        _heat_exchange(heating=True),
        inlets=(1, 1),
        outlets=(1, 1),
        numeric_params=("outletTemperature", "heatDuty", "heatCapacity", "pressureDrop"),
    ),
    UnitOperationType.COOLER: _UnitModel(
        _heat_exchange(heating=False),
        inlets=(1, 1),
        outlets=(1, 1),
        numeric_params=("outletTemperature", "heatDuty", "heatCapacity", "pressureDrop"),
    ),
    UnitOperationType.HEAT_EXCHANGER: _UnitModel(
        _heat_exchanger,
        inlets=(2, 2),
        outlets=(2, 2),
        numeric_params=("hotOutletTemperature", "hotHeatCapacity", "coldHeatCapacity"),
        requires_one_of=("hotOutletTemperature",),
    ),
}


# Solver ---------------------------------------------------------------------


class InMemoryFlowsheetSolver(FlowsheetSolver):
    """Pure-Python solver used for development, tests and the reference worker."""

    def __init__(self, config: SolverConfig | None = None) -> None:
        super().__init__(config)
        self._initialised = False
        self._built = False
        self._definition: Optional[SimulationDefinition] = None
        self._units: Dict[str, _BuiltUnit] = {}
        self._order: List[str] = []
        self._cyclic: List[str] = []
        self._feeds: Dict[str, StreamState] = {}
        self._states: Dict[str, StreamState] = {}
        self._molecular_weights: Dict[str, float] = {}
        self._warnings: List[str] = []
        self.solve_calls = 0

    def init(self) -> None:
        self._initialised = True

    def shutdown(self) -> None:
        self.reset()
        self._initialised = False

    def health(self) -> dict[str, object]:
        return {
            "status": "initialised" if self._initialised else "stopped",
            "backend": "inmemory",
            "supportedUnits": [unit.value for unit in _UNIT_MODELS],
        }

    def reset(self) -> None:
        self._built = False
        self._definition = None
        self._units = {}
        self._order = []
        self._cyclic = []
        self._feeds = {}
        self._states = {}
        self._molecular_weights = {}
        self._warnings = []

    # Build ------------------------------------------------------------------

    def build(
        self, definition: SimulationDefinition, token: Optional[CancellationToken] = None
    ) -> None:
        self._ensure_initialised()
        self.reset()
        errors: List[str] = []
        streams = {stream.id: stream for stream in definition.material_streams}
        energy = {stream.id: stream for stream in definition.energy_streams}
        known_compounds = {compound.name for compound in definition.compounds}
        producers: Dict[str, str] = {}
        consumers: Dict[str, str] = {}
        units: Dict[str, _BuiltUnit] = {}

        for unit in definition.unit_operations:
            if token is not None:
                token.raise_if_cancelled()
            model = _UNIT_MODELS.get(unit.type)
            if model is None:
                errors.append(
                    f"Unit operation '{unit.name}': type '{unit.type.value}' is not supported"
                )
                continue
            if not unit.input_stream_ids and not unit.output_stream_ids:
                errors.append(f"Unit operation '{unit.name}' has no connected streams")
                continue

            built = _BuiltUnit(unit, model, [], [], [], [])
            for ref in unit.input_stream_ids:
                if ref in streams:
                    if ref in consumers:
                        errors.append(
                            f"Stream '{streams[ref].name}' feeds more than one unit operation"
                        )
                    consumers[ref] = unit.id
                    built.inlets.append(ref)
                elif ref in energy:
                    built.energy_inlets.append(ref)
                else:
                    errors.append(
                        f"Unit operation '{unit.name}' references unknown inlet stream '{ref}'"
                    )
            for ref in unit.output_stream_ids:
                if ref in streams:
                    if ref in producers:
                        errors.append(
                            f"Stream '{streams[ref].name}' is produced by more than one unit operation"
                        )
                    producers[ref] = unit.id
                    built.outlets.append(ref)
                elif ref in energy:
                    built.energy_outlets.append(ref)
                else:
                    errors.append(
                        f"Unit operation '{unit.name}' references unknown outlet stream '{ref}'"
                    )
            errors.extend(self._validate_unit(built))
            units[unit.id] = built

        for stream in definition.material_streams:
            if stream.id in producers:
                continue
            if stream.mass_flow < 0:
                errors.append(f"Feed stream '{stream.name}' has negative mass flow")
            unknown = sorted(set(stream.molar_compositions) - known_compounds)
            if known_compounds and unknown:
                errors.append(
                    f"Stream '{stream.name}' references unknown compounds: {', '.join(unknown)}"
                )
            total = sum(stream.molar_compositions.values())
            if stream.molar_compositions and not math.isclose(
                total, 1.0, abs_tol=_COMPOSITION_TOLERANCE
            ):
                errors.append(
                    f"Stream '{stream.name}' molar compositions sum to {total:.4f}, expected 1.0"
                )
            if stream.id not in consumers:
                self._warnings.append(f"Stream '{stream.name}' is not connected to any unit")

        if errors:
            logger.info("solver.build.failed", errorCount=len(errors))
            raise BuildError(errors)

        self._definition = definition
        self._units = units
        self._feeds = {
            stream.id: StreamState(
                temperature=stream.temperature,
                pressure=stream.pressure,
                mass_flow=stream.mass_flow,
                compositions=dict(stream.molar_compositions),
                phase=stream.phase,
            )
            for stream in definition.material_streams
            if stream.id not in producers
        }
        self._molecular_weights = {
            compound.name: float(compound.constant_properties["molecularWeight"])
            for compound in definition.compounds
            if compound.constant_properties.get("molecularWeight")
        }
        self._order, self._cyclic = self._calculation_order(producers)
        self._built = True

    @staticmethod
    def _validate_unit(built: _BuiltUnit) -> List[str]:
        unit = built.definition
        model = built.model
        problems: List[str] = []
        for label, count, (low, high) in (
            ("inlet", len(built.inlets), model.inlets),
            ("outlet", len(built.outlets), model.outlets),
        ):
            if count < low or (high is not None and count > high):
                expected = str(low) if low == high else f"{low}..{high if high is not None else 'n'}"
                problems.append(
                    f"Unit operation '{unit.name}' ({unit.type.value}) needs {expected} "
                    f"{label} material stream(s), found {count}"
                )
        for key in model.numeric_params:
            value = unit.config_params.get(key)
            if value is None:
                continue
            try:
                float(value)
            except (TypeError, ValueError):
                problems.append(f"Unit operation '{unit.name}': parameter '{key}' must be numeric")
        if model.requires_one_of and not any(
            unit.config_params.get(key) is not None for key in model.requires_one_of
        ):
            options = " or ".join(model.requires_one_of)
            problems.append(f"Unit operation '{unit.name}' requires {options}")
        if unit.type == UnitOperationType.SPLITTER:
            problems.extend(_validate_split_ratios(unit, len(built.outlets)))
        if unit.type == UnitOperationType.SEPARATOR:
            fraction = unit.config_params.get("vaporFraction")
            if fraction is not None and isinstance(fraction, (int, float)) and not 0 <= fraction <= 1:
                problems.append(f"Unit operation '{unit.name}': vaporFraction must be within [0, 1]")
        return problems

    def _calculation_order(self, producers: Dict[str, str]) -> Tuple[List[str], List[str]]:
        upstream: Dict[str, set[str]] = {unit_id: set() for unit_id in self._units}
        downstream: Dict[str, set[str]] = {unit_id: set() for unit_id in self._units}
        for unit_id, built in self._units.items():
            for ref in built.inlets:
                source = producers.get(ref)
                if source is not None and source != unit_id:
                    upstream[unit_id].add(source)
                    downstream[source].add(unit_id)
                elif source == unit_id:
                    upstream[unit_id].add(unit_id)

        pending = {unit_id: len(parents) for unit_id, parents in upstream.items()}
        queue = deque(unit_id for unit_id in self._units if pending[unit_id] == 0)
        order: List[str] = []
        while queue:
            unit_id = queue.popleft()
            order.append(unit_id)
            for child in sorted(downstream[unit_id]):
                pending[child] -= 1
                if pending[child] == 0:
                    queue.append(child)
        cyclic = [unit_id for unit_id in self._units if unit_id not in order]
        return order + cyclic, cyclic

    # Solve ------------------------------------------------------------------

    def solve(self, token: Optional[CancellationToken] = None) -> SolveOutcome:
        self._ensure_built()
        self.solve_calls += 1
        started = time.perf_counter()
        self._states = {key: replace(value) for key, value in self._feeds.items()}
        recycled = {ref for unit_id in self._cyclic for ref in self._units[unit_id].outlets}
        if self._cyclic:
            names = ", ".join(self._units[unit_id].definition.name for unit_id in self._cyclic)
            self._warnings.append(f"Recycle detected through units: {names}")

        converged = False
        iteration = 0
        for iteration in range(1, self.config.max_iterations + 1):
            if token is not None:
                token.raise_if_cancelled()
            previous = {ref: replace(self._states[ref]) for ref in recycled if ref in self._states}
            for unit_id in self._order:
                if token is not None:
                    token.raise_if_cancelled()
                self._calculate(self._units[unit_id], recycled)
            if not self._cyclic:
                converged = True
                break
            if previous and len(previous) == len(recycled) and all(
                _stream_distance(previous[ref], self._states[ref]) < self.config.tolerance
                for ref in recycled
            ):
                converged = True
                break

        errors = [
            f"Unit operation '{built.definition.name}': {built.error}"
            for built in self._units.values()
            if built.error
        ]
        if self._cyclic and not converged:
            errors.append(
                f"Recycle did not converge within {self.config.max_iterations} iterations"
            )
        converged = converged and not errors
        logger.debug(
            "solver.solve.complete",
            converged=converged,
            iterations=iteration,
            durationMs=(time.perf_counter() - started) * 1000,
        )
        return SolveOutcome(converged=converged, iterations=iteration, errors=errors)

    def _calculate(self, built: _BuiltUnit, recycled: set[str]) -> None:
        inlets: List[StreamState] = []
        for ref in built.inlets:
            state = self._states.get(ref)
            if state is None and ref in recycled:
                state = StreamState(temperature=298.15, pressure=101325.0, mass_flow=0.0)
            if state is None:
                built.calculated = False
                built.error = "inlet stream was not calculated"
                return
            inlets.append(state)

        energy_streams = self._definition.energy_streams if self._definition else []
        energy_in = sum(
            stream.energy_flow
            for stream in energy_streams
            if stream.id in built.energy_inlets
        )
        context = _UnitContext(
            name=built.definition.name,
            params=built.definition.config_params,
            inlets=inlets,
            outlet_count=len(built.outlets),
            energy_in=energy_in,
            molecular_weights=self._molecular_weights,
        )
        try:
            outlets, properties = built.model.calculate(context)
        except _CalculationError as exc:
            built.calculated = False
            built.error = str(exc)
            return
        for ref, state in zip(built.outlets, outlets):
            self._states[ref] = state
        built.calculated = True
        built.error = None
        built.properties = properties

    # Collect ----------------------------------------------------------------

    def collect(self) -> CollectedResults:
        self._ensure_built()
        definition = self._definition
        if definition is None:
            raise SolverError(SolverErrorCode.COLLECT_FAILED, "Flowsheet definition is missing")
        results = CollectedResults(warnings=list(self._warnings))
        for stream in definition.material_streams:
            state = self._states.get(stream.id)
            if state is None:
                results.warnings.append(f"Stream '{stream.name}' has no calculated state")
                continue
            key = stream.name
            if key in results.material_streams:
                results.warnings.append(f"Duplicate stream name '{stream.name}', keyed by id")
                key = stream.id
            results.material_streams[key] = MaterialStreamResult(
                temperature=state.temperature,
                pressure=state.pressure,
                mass_flow=state.mass_flow,
                molar_compositions=dict(state.compositions),
                phase=state.phase,
            )
        for built in self._units.values():
            name = built.definition.name
            if name in results.unit_operations:
                results.warnings.append(f"Duplicate unit operation name '{name}', keyed by id")
                name = built.definition.id
            results.unit_operations[name] = UnitOperationResult(
                calculated=built.calculated,
                error_message=built.error,
                additional_properties={
                    key: float(value) for key, value in built.properties.items()
                },
            )
        return results

    # Helpers ----------------------------------------------------------------

    def _ensure_initialised(self) -> None:
        if not self._initialised:
            raise SolverError(SolverErrorCode.NOT_INITIALISED, "Solver has not been initialised")

    def _ensure_built(self) -> None:
        self._ensure_initialised()
        if not self._built:
            raise SolverError(SolverErrorCode.SOLVE_FAILED, "No flowsheet has been built")


def _validate_split_ratios(unit: UnitOperationDefinition, outlet_count: int) -> List[str]:
    ratios = unit.config_params.get("splitRatios")
    if ratios is None:
        return []
    if not isinstance(ratios, list) or not all(isinstance(v, (int, float)) for v in ratios):
        return [f"Unit operation '{unit.name}': splitRatios must be a list of numbers"]
    problems = []
    if len(ratios) != outlet_count:
        problems.append(
            f"Unit operation '{unit.name}': {len(ratios)} split ratios for {outlet_count} outlets"
        )
    if any(value < 0 for value in ratios) or not math.isclose(
        sum(ratios), 1.0, abs_tol=_COMPOSITION_TOLERANCE
    ):
        problems.append(f"Unit operation '{unit.name}': split ratios must be non-negative and sum to 1")
    return problems


def _stream_distance(old: StreamState, new: StreamState) -> float:
    scale = max(abs(old.mass_flow), 1e-12)
    return max(
        abs(new.mass_flow - old.mass_flow) / scale,
        abs(new.temperature - old.temperature) / max(old.temperature, 1.0),
        abs(new.pressure - old.pressure) / max(old.pressure, 1.0),
    )


__all__ = ["InMemoryFlowsheetSolver", "StreamState"]

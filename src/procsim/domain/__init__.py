"""Simulation domain: lifecycle, aggregate and wire models."""

from .models import SimulationRecord, SubmittedJob, build_job_message, record_from_definition
from .schema import (
    FailureKind,
    JobMessage,
    SimulationDefinition,
    SimulationResult,
)
from .status import InvalidTransitionError, SimulationStatus, ensure_transition

__all__ = [
    "FailureKind",
    "InvalidTransitionError",
    "JobMessage",
    "SimulationDefinition",
    "SimulationRecord",
    "SimulationResult",
    "SimulationStatus",
    "SubmittedJob",
    "build_job_message",
    "ensure_transition",
    "record_from_definition",
]

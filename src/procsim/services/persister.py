"""Status and result writes performed by the worker."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..domain.ids import is_newer
from ..domain.models import SimulationRecord
from ..domain.schema import FailureKind, JobMessage, SimulationResult
from ..domain.status import IN_FLIGHT, TERMINAL, SimulationStatus, ensure_transition
from ..logging import get_logger
from ..storage import (
    SimulationNotFoundError,
    SimulationRepository,
    StaleWriteError,
    StoreUnavailableError,
)
from .errors import TransientInfrastructureError

logger = get_logger(__name__)

PERSIST_FAILURE_PREFIX = "Failed to persist results: "
_ADMISSION_ATTEMPTS = 3


class Admission(str, Enum):
    """Outcome of the receipt check performed before any solver call."""

    STARTED = "started"
    REDELIVERED = "redelivered"
    ADOPTED = "adopted"
    DUPLICATE = "duplicate"
    STALE = "stale"
    SUPERSEDED = "superseded"
    MISSING = "missing"

    @property
    def runs(self) -> bool:
        return self in {Admission.STARTED, Admission.REDELIVERED, Admission.ADOPTED}


@dataclass(frozen=True)
class AdmissionDecision:
    admission: Admission
    record: Optional[SimulationRecord] = None


class ResultPersister:
    """Moves records to Running on receipt and writes the terminal outcome.

    Every write is conditioned on the job id bound to the record, so a message
    that lost the record to a newer submission can never overwrite it.
    """

    def __init__(self, repository: SimulationRepository) -> None:
        self._repository = repository

    def mark_running(self, message: JobMessage) -> AdmissionDecision:
        """Decide whether ``message`` should run and, if so, mark the record Running.

        Redelivered messages run again, duplicate and stale deliveries are
        skipped without touching the record, and a message whose Pending write
        never landed is adopted.
        """

        for _ in range(_ADMISSION_ATTEMPTS):
            try:
                return self._admit(message)
            except StaleWriteError as exc:
                logger.info("job.admission.retry", currentJobId=exc.actual_job_id)
            except StoreUnavailableError as exc:
                raise TransientInfrastructureError(str(exc)) from exc
        raise TransientInfrastructureError(
            f"Simulation '{message.simulation_id}' kept changing during admission"
        )

    def _admit(self, message: JobMessage) -> AdmissionDecision:
        try:
            record = self._repository.get(message.simulation_id)
        except SimulationNotFoundError:
            logger.warning("job.admission.missing_simulation")
            return AdmissionDecision(Admission.MISSING)

        same_job = record.job_id == message.job_id
        status = record.status

        if same_job and status == SimulationStatus.RUNNING:
            logger.info("job.admission.redelivered")
            return AdmissionDecision(Admission.REDELIVERED, record)
        if same_job and status in TERMINAL:
            logger.info("job.admission.duplicate", status=status.value)
            return AdmissionDecision(Admission.DUPLICATE, record)
        if not same_job and not is_newer(message.job_id, record.job_id):
            logger.info("job.admission.stale", currentJobId=record.job_id)
            return AdmissionDecision(Admission.STALE, record)

        if same_job and status == SimulationStatus.PENDING:
            admission = Admission.STARTED
        elif not same_job and status not in IN_FLIGHT:
            # Published, but the Pending write never landed.
            ensure_transition(status, SimulationStatus.PENDING)
            admission = Admission.ADOPTED
            status = SimulationStatus.PENDING
        else:
            logger.warning(
                "job.admission.superseded", status=status.value, currentJobId=record.job_id
            )
            return AdmissionDecision(Admission.SUPERSEDED, record)

        ensure_transition(status, SimulationStatus.RUNNING)
        try:
            updated = self._repository.update_status(
                message.simulation_id,
                SimulationStatus.RUNNING,
                error_message=None,
                job_id=message.job_id,
                expected_job_id=record.job_id,
            )
        except SimulationNotFoundError:
            logger.warning("job.admission.missing_simulation")
            return AdmissionDecision(Admission.MISSING)
        logger.info("job.running", admission=admission.value)
        return AdmissionDecision(admission, updated)

    def persist(self, simulation_id: str, result: SimulationResult) -> Optional[SimulationStatus]:
        """Write the terminal status, message and payload in one update.

        If that write fails a best-effort Failed write follows. Store
        unavailability during the fallback is raised for the channel to retry.
        Returns None when the record no longer belongs to this job.
        """

        final = SimulationStatus.CONVERGED if result.success else SimulationStatus.FAILED
        ensure_transition(SimulationStatus.RUNNING, final)
        error_message = None if result.success else (result.error_message or "Simulation failed")
        try:
            self._repository.update_status(
                simulation_id,
                final,
                error_message=error_message,
                result_payload=result.to_payload(),
                expected_job_id=result.job_id,
            )
        except (SimulationNotFoundError, StaleWriteError) as exc:
            logger.warning("job.persist.discarded", reason=str(exc))
            return None
        except Exception as exc:
            logger.error("job.persist.failed", reason=str(exc))
            return self._persist_fallback(simulation_id, result, exc)
        logger.info("job.persisted", status=final.value)
        return final

    def _persist_fallback(
        self, simulation_id: str, result: SimulationResult, cause: Exception
    ) -> Optional[SimulationStatus]:
        message = f"{PERSIST_FAILURE_PREFIX}{cause}"
        fallback = SimulationResult.failure(
            job_id=result.job_id or "",
            kind=FailureKind.INTERNAL_ERROR,
            message=message,
            warnings=result.warnings,
        )
        try:
            self._repository.update_status(
                simulation_id,
                SimulationStatus.FAILED,
                error_message=message,
                result_payload=fallback.to_payload(),
                expected_job_id=result.job_id,
            )
        except (SimulationNotFoundError, StaleWriteError) as exc:
            logger.warning("job.persist.discarded", reason=str(exc))
            return None
        except StoreUnavailableError as exc:
            logger.error("job.persist.fallback_failed", reason=str(exc))
            raise TransientInfrastructureError(str(exc)) from exc
        logger.warning("job.persist.fallback_written")
        return SimulationStatus.FAILED


__all__ = ["Admission", "AdmissionDecision", "PERSIST_FAILURE_PREFIX", "ResultPersister"]

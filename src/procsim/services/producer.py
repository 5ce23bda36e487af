"""Submission path: snapshot a simulation, publish it, mark it Pending."""

from __future__ import annotations

from ..domain.models import SubmittedJob, build_job_message
from ..domain.status import IN_FLIGHT, SimulationStatus, ensure_transition
from ..logging import get_logger
from ..storage import SimulationRepository, StaleWriteError, StoreUnavailableError
from .channel import MessageChannel
from .errors import SimulationConflictError, TransientInfrastructureError

logger = get_logger(__name__)


class JobProducer:
    """Admits a submission and hands an immutable job message to the channel.

    Publish and the Pending write are separate operations. If the status write
    fails after a successful publish the message is orphaned; the worker adopts
    it on receipt and the terminal write settles the record.
    """

    def __init__(self, repository: SimulationRepository, channel: MessageChannel) -> None:
        self._repository = repository
        self._channel = channel

    def submit(self, simulation_id: str) -> SubmittedJob:
        try:
            record = self._repository.get(simulation_id)
        except StoreUnavailableError as exc:
            raise TransientInfrastructureError(str(exc)) from exc

        if record.status in IN_FLIGHT:
            logger.info(
                "job.submit.conflict", simulationId=simulation_id, status=record.status.value
            )
            raise SimulationConflictError(simulation_id, record.status)
        ensure_transition(record.status, SimulationStatus.PENDING)

        message = build_job_message(record)
        self._channel.publish(message)
        logger.info("job.published", jobId=message.job_id, simulationId=simulation_id)

        try:
            self._repository.update_status(
                simulation_id,
                SimulationStatus.PENDING,
                error_message=None,
                job_id=message.job_id,
                expected_job_id=record.job_id,
            )
        except StaleWriteError as exc:
            if exc.actual_job_id != message.job_id:
                # A concurrent submission bound its own job first; ours is left orphaned.
                logger.warning(
                    "job.submit.conflict",
                    simulationId=simulation_id,
                    orphanedJobId=message.job_id,
                    boundJobId=exc.actual_job_id,
                )
                raise SimulationConflictError(
                    simulation_id, self._current_status(simulation_id)
                ) from exc
            logger.info("job.submit.already_adopted", jobId=message.job_id)
        except Exception as exc:
            logger.error(
                "job.submit.status_write_failed",
                jobId=message.job_id,
                simulationId=simulation_id,
                reason=str(exc),
            )
            if isinstance(exc, StoreUnavailableError):
                raise TransientInfrastructureError(str(exc)) from exc
            raise
        return SubmittedJob(
            job_id=message.job_id,
            simulation_id=simulation_id,
            status=SimulationStatus.PENDING,
        )

    def _current_status(self, simulation_id: str) -> SimulationStatus:
        try:
            return self._repository.get(simulation_id).status
        except StoreUnavailableError as exc:
            raise TransientInfrastructureError(str(exc)) from exc


__all__ = ["JobProducer"]

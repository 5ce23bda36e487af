"""Tests for receipt admission and terminal writes."""

from __future__ import annotations

from typing import Any

import pytest

from procsim.domain.models import build_job_message, record_from_definition
from procsim.domain.schema import FailureKind, JobMessage, SimulationDefinition, SimulationResult
from procsim.domain.status import SimulationStatus
from procsim.services.errors import TransientInfrastructureError
from procsim.services.persister import PERSIST_FAILURE_PREFIX, Admission, ResultPersister
from procsim.storage import InMemorySimulationRepository, StoreUnavailableError


def _submitted(
    repository: InMemorySimulationRepository, definition: SimulationDefinition
) -> JobMessage:
    record = repository.add(record_from_definition(definition))
    message = build_job_message(record)
    repository.update_status(record.id, SimulationStatus.PENDING, job_id=message.job_id)
    return message


def test_pending_record_is_started(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    message = _submitted(repository, mixer_definition)

    decision = ResultPersister(repository).mark_running(message)

    assert decision.admission is Admission.STARTED
    assert decision.record is not None
    assert decision.record.status is SimulationStatus.RUNNING
    assert repository.get(message.simulation_id).status is SimulationStatus.RUNNING


def test_redelivery_of_running_job_runs_again(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    message = _submitted(repository, mixer_definition)
    persister = ResultPersister(repository)
    persister.mark_running(message)

    decision = persister.mark_running(message)

    assert decision.admission is Admission.REDELIVERED
    assert decision.admission.runs


def test_duplicate_after_terminal_write_is_skipped(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    message = _submitted(repository, mixer_definition)
    persister = ResultPersister(repository)
    persister.mark_running(message)
    persister.persist(message.simulation_id, SimulationResult(job_id=message.job_id, success=True))

    decision = persister.mark_running(message)

    assert decision.admission is Admission.DUPLICATE
    assert not decision.admission.runs
    assert repository.get(message.simulation_id).status is SimulationStatus.CONVERGED


def test_older_job_is_stale(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    old = _submitted(repository, mixer_definition)
    record = repository.get(old.simulation_id)
    newer = build_job_message(record)
    repository.update_status(record.id, SimulationStatus.PENDING, job_id=newer.job_id)

    decision = ResultPersister(repository).mark_running(old)

    assert decision.admission is Admission.STALE
    stored = repository.get(old.simulation_id)
    assert stored.status is SimulationStatus.PENDING
    assert stored.job_id == newer.job_id


def test_message_without_pending_write_is_adopted(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = repository.add(record_from_definition(mixer_definition))
    message = build_job_message(record)

    decision = ResultPersister(repository).mark_running(message)

    assert decision.admission is Admission.ADOPTED
    stored = repository.get(record.id)
    assert stored.status is SimulationStatus.RUNNING
    assert stored.job_id == message.job_id


def test_newer_message_does_not_steal_an_in_flight_record(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    current = _submitted(repository, mixer_definition)
    ResultPersister(repository).mark_running(current)
    orphan = build_job_message(repository.get(current.simulation_id))

    decision = ResultPersister(repository).mark_running(orphan)

    assert decision.admission is Admission.SUPERSEDED
    assert repository.get(current.simulation_id).job_id == current.job_id


def test_deleted_simulation_is_missing(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    message = _submitted(repository, mixer_definition)
    repository.delete(message.simulation_id)

    decision = ResultPersister(repository).mark_running(message)

    assert decision.admission is Admission.MISSING
    assert decision.record is None


def test_persist_writes_failure_message_and_payload(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    message = _submitted(repository, mixer_definition)
    persister = ResultPersister(repository)
    persister.mark_running(message)
    result = SimulationResult.failure(
        job_id=message.job_id, kind=FailureKind.BUILD_FAILURE, message="Build failed: no outlet"
    )

    status = persister.persist(message.simulation_id, result)

    assert status is SimulationStatus.FAILED
    stored = repository.get(message.simulation_id)
    assert stored.error_message == "Build failed: no outlet"
    assert stored.result_payload is not None
    assert stored.result_payload["failureKind"] == "BuildFailure"


def test_persist_discards_result_of_superseded_job(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    message = _submitted(repository, mixer_definition)
    persister = ResultPersister(repository)
    persister.mark_running(message)
    repository.update_status(message.simulation_id, SimulationStatus.PENDING, job_id="z-newer")

    status = persister.persist(
        message.simulation_id, SimulationResult(job_id=message.job_id, success=True)
    )

    assert status is None
    assert repository.get(message.simulation_id).status is SimulationStatus.PENDING


class FlakyStatusRepository(InMemorySimulationRepository):
    """Fails the first terminal write, then optionally the fallback as well."""

    def __init__(self, *, fallback_error: Exception | None = None) -> None:
        super().__init__()
        self.fallback_error = fallback_error
        self.terminal_writes = 0

    def update_status(self, simulation_id: str, status: SimulationStatus, **kwargs: Any):
        if status in {SimulationStatus.CONVERGED, SimulationStatus.FAILED}:
            self.terminal_writes += 1
            if self.terminal_writes == 1:
                raise ValueError("payload too large")
            if self.fallback_error is not None:
                raise self.fallback_error
        return super().update_status(simulation_id, status, **kwargs)


def test_failed_terminal_write_falls_back_to_failed(
    mixer_definition: SimulationDefinition,
) -> None:
    repository = FlakyStatusRepository()
    message = _submitted(repository, mixer_definition)
    persister = ResultPersister(repository)
    persister.mark_running(message)

    status = persister.persist(
        message.simulation_id, SimulationResult(job_id=message.job_id, success=True)
    )

    assert status is SimulationStatus.FAILED
    stored = repository.get(message.simulation_id)
    assert stored.error_message == f"{PERSIST_FAILURE_PREFIX}payload too large"
    assert stored.result_payload is not None
    assert stored.result_payload["failureKind"] == "InternalError"


def test_unavailable_store_during_fallback_is_transient(
    mixer_definition: SimulationDefinition,
) -> None:
    repository = FlakyStatusRepository(fallback_error=StoreUnavailableError("disk I/O error"))
    message = _submitted(repository, mixer_definition)
    persister = ResultPersister(repository)
    persister.mark_running(message)

    with pytest.raises(TransientInfrastructureError):
        persister.persist(
            message.simulation_id, SimulationResult(job_id=message.job_id, success=True)
        )

    assert repository.get(message.simulation_id).status is SimulationStatus.RUNNING


def test_unavailable_store_on_receipt_is_transient(mixer_definition: SimulationDefinition) -> None:
    class DownRepository(InMemorySimulationRepository):
        def get(self, simulation_id: str):
            raise StoreUnavailableError("database is locked")

    with pytest.raises(TransientInfrastructureError):
        ResultPersister(DownRepository()).mark_running(
            build_job_message(record_from_definition(mixer_definition))
        )

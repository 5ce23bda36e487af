from __future__ import annotations

import time

from procsim.domain.models import record_from_definition
from procsim.domain.schema import SimulationDefinition
from procsim.domain.status import SimulationStatus
from procsim.services.reconciler import find_stale_jobs
from procsim.storage import InMemorySimulationRepository


def test_reports_only_old_in_flight_records(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    stuck = repository.add(record_from_definition(mixer_definition))
    finished = repository.add(record_from_definition(mixer_definition))
    repository.update_status(stuck.id, SimulationStatus.RUNNING, job_id="job-1")
    repository.update_status(finished.id, SimulationStatus.CONVERGED, job_id="job-2")
    later = time.time() + 600

    stale = find_stale_jobs(repository, 300, clock=lambda: later)

    assert [record.id for record in stale] == [stuck.id]


def test_recent_jobs_are_not_stale(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = repository.add(record_from_definition(mixer_definition))
    repository.update_status(record.id, SimulationStatus.PENDING, job_id="job-1")

    assert find_stale_jobs(repository, 300) == []


def test_reconciler_does_not_modify_records(
    repository: InMemorySimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = repository.add(record_from_definition(mixer_definition))
    updated = repository.update_status(record.id, SimulationStatus.RUNNING, job_id="job-1")
    later = time.time() + 600

    find_stale_jobs(repository, 60, clock=lambda: later)

    after = repository.get(record.id)
    assert after.status is SimulationStatus.RUNNING
    assert after.updated_at == updated.updated_at

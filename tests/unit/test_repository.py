"""Contract tests shared by the in-memory and SQLite record stores."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Iterator

import pytest

from procsim.domain.models import record_from_definition
from procsim.domain.schema import SimulationDefinition
from procsim.domain.status import IN_FLIGHT, SimulationStatus
from procsim.storage import (
    InMemorySimulationRepository,
    SimulationNotFoundError,
    SimulationRepository,
    SqliteSimulationRepository,
    StaleWriteError,
)


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[SimulationRepository]:
    if request.param == "memory":
        repository: SimulationRepository = InMemorySimulationRepository()
    else:
        repository = SqliteSimulationRepository(str(tmp_path / "store" / "simulations.db"))
    yield repository
    repository.close()


def test_add_and_get_round_trip(
    store: SimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = store.add(record_from_definition(mixer_definition))

    loaded = store.get(record.id)

    assert loaded.status is SimulationStatus.CREATED
    assert loaded.to_definition() == mixer_definition
    assert [stream.name for stream in loaded.material_streams] == ["Feed1", "Feed2", "Product"]
    assert loaded.unit_operations[0].input_stream_ids == ["s-feed-1", "s-feed-2"]


def test_get_unknown_simulation(store: SimulationRepository) -> None:
    with pytest.raises(SimulationNotFoundError) as excinfo:
        store.get("missing")

    assert str(excinfo.value) == "Simulation 'missing' not found"


def test_returned_records_are_copies(
    store: SimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = store.add(record_from_definition(mixer_definition))
    record.material_streams.clear()

    assert len(store.get(record.id).material_streams) == 3


def test_update_status_keeps_definition(
    store: SimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = store.add(record_from_definition(mixer_definition))

    updated = store.update_status(
        record.id, SimulationStatus.PENDING, job_id="job-1", expected_job_id=None
    )

    assert updated.status is SimulationStatus.PENDING
    assert updated.job_id == "job-1"
    assert updated.to_definition() == mixer_definition
    assert updated.updated_at >= record.updated_at


def test_update_status_with_payload_and_message(
    store: SimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = store.add(record_from_definition(mixer_definition))
    store.update_status(record.id, SimulationStatus.PENDING, job_id="job-1")

    failed = store.update_status(
        record.id,
        SimulationStatus.FAILED,
        error_message="Build failed: boom",
        result_payload={"success": False, "failureKind": "BuildFailure"},
        expected_job_id="job-1",
    )

    assert failed.error_message == "Build failed: boom"
    assert failed.result_payload == {"success": False, "failureKind": "BuildFailure"}
    assert failed.job_id == "job-1"


def test_conditional_write_rejects_other_job(
    store: SimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = store.add(record_from_definition(mixer_definition))
    store.update_status(record.id, SimulationStatus.PENDING, job_id="job-2")

    with pytest.raises(StaleWriteError) as excinfo:
        store.update_status(record.id, SimulationStatus.CONVERGED, expected_job_id="job-1")

    assert excinfo.value.actual_job_id == "job-2"
    assert store.get(record.id).status is SimulationStatus.PENDING


def test_save_definition_leaves_status_alone(
    store: SimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    record = store.add(record_from_definition(mixer_definition))
    store.update_status(record.id, SimulationStatus.FAILED, error_message="bad")

    draft = store.get(record.id)
    draft.name = "Renamed"
    draft.material_streams.pop()
    store.save_definition(draft)

    reloaded = store.get(record.id)
    assert reloaded.name == "Renamed"
    assert len(reloaded.material_streams) == 2
    assert reloaded.status is SimulationStatus.FAILED
    assert reloaded.error_message == "bad"


def test_delete(store: SimulationRepository, mixer_definition: SimulationDefinition) -> None:
    record = store.add(record_from_definition(mixer_definition))

    store.delete(record.id)

    with pytest.raises(SimulationNotFoundError):
        store.get(record.id)
    with pytest.raises(SimulationNotFoundError):
        store.delete(record.id)


def test_find_by_status_filters_on_age(
    store: SimulationRepository, mixer_definition: SimulationDefinition
) -> None:
    running = store.add(record_from_definition(mixer_definition))
    idle = store.add(record_from_definition(mixer_definition))
    store.update_status(running.id, SimulationStatus.PENDING, job_id="job-1")
    cutoff = time.time() + 1

    matches = store.find_by_status(IN_FLIGHT, updated_before=cutoff)

    assert [record.id for record in matches] == [running.id]
    assert idle.id not in [record.id for record in store.find_by_status(IN_FLIGHT)]
    assert store.find_by_status(IN_FLIGHT, updated_before=0) == []


def test_sqlite_store_survives_reopen(
    tmp_path: Path, mixer_definition: SimulationDefinition
) -> None:
    path = str(tmp_path / "simulations.db")
    first = SqliteSimulationRepository(path)
    record = first.add(record_from_definition(mixer_definition))
    first.update_status(
        record.id,
        SimulationStatus.CONVERGED,
        result_payload={"success": True},
        job_id="job-9",
    )
    first.close()

    second = SqliteSimulationRepository(path)
    try:
        reopened = second.get(record.id)
    finally:
        second.close()

    assert reopened.status is SimulationStatus.CONVERGED
    assert reopened.result_payload == {"success": True}
    assert reopened.job_id == "job-9"
    assert reopened.to_definition() == mixer_definition

from __future__ import annotations

from typing import Iterator

import pytest

pytest.importorskip("celery")

from kombu.exceptions import OperationalError

from procsim.config import AppConfig
from procsim.domain.models import build_job_message, record_from_definition
from procsim.domain.schema import SimulationDefinition
from procsim.domain.status import SimulationStatus
from procsim.runtime.factory import build_consumer
from procsim.services import celery_app as celery_module
from procsim.services.celery_app import (
    bind_worker_consumer,
    configure_celery,
    consume_simulation_job,
)
from procsim.services.channel import CeleryChannel
from procsim.services.errors import TransientInfrastructureError
from procsim.storage import InMemorySimulationRepository


@pytest.fixture
def eager_config(monkeypatch: pytest.MonkeyPatch) -> Iterator[AppConfig]:
    monkeypatch.setattr(celery_module, "_worker_consumer", None)
    monkeypatch.setattr(celery_module, "_worker_config", None)
    config = AppConfig(channel_backend="celery", celery_task_always_eager=True)
    configure_celery(config)
    yield config
    configure_celery(AppConfig())


def test_eager_task_runs_the_job(
    eager_config: AppConfig,
    repository: InMemorySimulationRepository,
    mixer_definition: SimulationDefinition,
) -> None:
    consumer = build_consumer(eager_config, repository)
    bind_worker_consumer(consumer, eager_config)
    record = repository.add(record_from_definition(mixer_definition))
    message = build_job_message(record)
    repository.update_status(record.id, SimulationStatus.PENDING, job_id=message.job_id)

    CeleryChannel().publish(message)

    stored = repository.get(record.id)
    assert stored.status is SimulationStatus.CONVERGED
    assert stored.job_id == message.job_id
    consumer.lane.close()


def test_task_reports_skipped_duplicates(
    eager_config: AppConfig,
    repository: InMemorySimulationRepository,
    mixer_definition: SimulationDefinition,
) -> None:
    consumer = build_consumer(eager_config, repository)
    bind_worker_consumer(consumer, eager_config)
    record = repository.add(record_from_definition(mixer_definition))
    message = build_job_message(record)
    repository.update_status(record.id, SimulationStatus.PENDING, job_id=message.job_id)

    first = consume_simulation_job.apply(kwargs={"message": message.to_wire()}).get()
    second = consume_simulation_job.apply(kwargs={"message": message.to_wire()}).get()

    assert first["admission"] == "started"
    assert first["status"] == "Converged"
    assert second["admission"] == "duplicate"
    consumer.lane.close()


def test_broker_outage_is_transient(
    monkeypatch: pytest.MonkeyPatch, mixer_definition: SimulationDefinition
) -> None:
    def refuse(*args: object, **kwargs: object) -> None:
        raise OperationalError("Connection refused")

    monkeypatch.setattr(consume_simulation_job, "apply_async", refuse)
    message = build_job_message(record_from_definition(mixer_definition))

    with pytest.raises(TransientInfrastructureError, match="Message broker unavailable"):
        CeleryChannel().publish(message)

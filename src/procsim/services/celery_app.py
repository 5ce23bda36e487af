"""Celery application configuration and the simulation job task."""

from __future__ import annotations

import threading
from typing import Any, Dict, Optional

from celery import Celery
from celery.exceptions import Reject
from celery.signals import worker_shutdown

from ..config import AppConfig
from ..constants import JOB_QUEUE_NAME
from ..domain.schema import JobMessage
from ..logging import get_logger
from ..util.concurrency import JobCancelledError
from .errors import TransientInfrastructureError

logger = get_logger(__name__)

celery_app = Celery("procsim")

_worker_lock = threading.Lock()
_worker_consumer: Any = None
_worker_config: Optional[AppConfig] = None
_worker_repository: Any = None


def configure_celery(config: AppConfig) -> Celery:
    """Configure the Celery application using runtime configuration."""

    celery_app.conf.update(
        broker_url=config.celery_broker_url,
        result_backend=config.celery_result_backend,
        task_always_eager=config.celery_task_always_eager,
        task_eager_propagates=config.celery_task_eager_propagates,
        task_default_queue=JOB_QUEUE_NAME,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=1,
        timezone="UTC",
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
    )
    return celery_app


def bind_worker_consumer(consumer: Any, config: AppConfig) -> None:
    """Install the consumer used by the task, e.g. one shared with an API process."""

    global _worker_consumer, _worker_config
    with _worker_lock:
        _worker_consumer = consumer
        _worker_config = config


def get_worker_consumer() -> Any:
    """Return the process-wide consumer, building it from the environment on first use."""

    global _worker_consumer, _worker_config, _worker_repository
    with _worker_lock:
        if _worker_consumer is None:
            from ..runtime.factory import build_consumer, build_repository

            config = _worker_config or AppConfig.from_env()
            _worker_repository = build_repository(config)
            _worker_consumer = build_consumer(config, _worker_repository)
            _worker_config = config
            logger.info("worker.consumer_ready", solverBackend=config.solver_backend)
        return _worker_consumer


def _retry_settings() -> tuple[int, float]:
    config = _worker_config or AppConfig()
    return config.job_max_retries, float(config.job_retry_interval_seconds)


@celery_app.task(bind=True, name="procsim.consume_simulation_job")
def consume_simulation_job(self, *, message: Dict[str, Any]) -> Dict[str, Any]:
    job = JobMessage.from_wire(message)
    consumer = get_worker_consumer()
    try:
        outcome = consumer.consume(job)
    except TransientInfrastructureError as exc:
        max_retries, countdown = _retry_settings()
        logger.warning(
            "worker.retry",
            jobId=job.job_id,
            attempt=self.request.retries + 1,
            reason=str(exc),
        )
        raise self.retry(exc=exc, countdown=countdown, max_retries=max_retries)
    except JobCancelledError as exc:
        raise Reject(str(exc), requeue=True) from exc
    return {
        "jobId": outcome.job_id,
        "simulationId": outcome.simulation_id,
        "admission": outcome.admission.value,
        "status": outcome.status.value if outcome.status is not None else None,
    }


@worker_shutdown.connect
def _on_worker_shutdown(**_: Any) -> None:
    global _worker_consumer, _worker_repository
    with _worker_lock:
        consumer, repository = _worker_consumer, _worker_repository
        _worker_consumer = None
        _worker_repository = None
    if consumer is not None:
        consumer.request_shutdown()
        consumer.lane.close()
    if repository is not None:
        repository.close()
    logger.info("worker.shutdown")


__all__ = [
    "bind_worker_consumer",
    "celery_app",
    "configure_celery",
    "consume_simulation_job",
    "get_worker_consumer",
]

"""Entrypoint for a Celery worker consuming simulation jobs.

The solver is not reentrant, so each worker process runs the solo pool with a
prefetch of one; scale out by starting more processes.
"""

from __future__ import annotations

from .config import load_config
from .constants import JOB_QUEUE_NAME
from .logging import get_logger, setup_logging
from .services.celery_app import celery_app, configure_celery


def run() -> None:
    config = load_config()
    setup_logging(config.log_level, service=f"{config.service_name}-worker")
    configure_celery(config)
    get_logger(__name__).info(
        "worker.startup",
        service=config.service_name,
        version=config.service_version,
        queue=JOB_QUEUE_NAME,
    )
    celery_app.worker_main(
        [
            "worker",
            "--pool=solo",
            "--concurrency=1",
            "--prefetch-multiplier=1",
            f"--queues={JOB_QUEUE_NAME}",
            f"--loglevel={config.log_level}",
        ]
    )


if __name__ == "__main__":  # pragma: no cover - manual invocation
    run()

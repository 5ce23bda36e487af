"""Message channels carrying job messages from the producer to a consumer."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Protocol

from ..domain.schema import JobMessage
from ..logging import get_logger
from ..util.concurrency import JobCancelledError
from .errors import TransientInfrastructureError

if TYPE_CHECKING:  # pragma: no cover
    from .consumer import JobConsumer, JobOutcome

logger = get_logger(__name__)

_STOP = object()


class MessageChannel(Protocol):
    """Publish side of an at-least-once job queue."""

    def publish(self, message: JobMessage) -> None:
        ...

    def shutdown(self) -> None:
        ...


@dataclass(frozen=True)
class DeadLetter:
    message: JobMessage
    reason: str
    attempts: int


class InProcessChannel:
    """Single-thread queue feeding a local ``JobConsumer``.

    Transient infrastructure failures are retried ``max_retries`` times with a
    fixed ``retry_interval``; after that the message is dead-lettered.
    """

    def __init__(
        self,
        consumer: "JobConsumer",
        *,
        max_retries: int = 3,
        retry_interval: float = 1.0,
    ) -> None:
        self._consumer = consumer
        self._max_retries = max(0, int(max_retries))
        self._retry_interval = max(0.0, float(retry_interval))
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._idle = threading.Condition()
        self._in_flight = 0
        self._closed = False
        self.published: List[JobMessage] = []
        self.dead_letters: List[DeadLetter] = []
        self.outcomes: List["JobOutcome"] = []
        self._thread = threading.Thread(
            target=self._run, name="procsim-channel", daemon=True
        )
        self._thread.start()

    def publish(self, message: JobMessage) -> None:
        with self._idle:
            if self._closed:
                raise TransientInfrastructureError("Message channel is shut down")
            self._in_flight += 1
            self.published.append(message)
        self._queue.put(message)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Block until every published message has been handled."""

        with self._idle:
            return self._idle.wait_for(lambda: self._in_flight == 0, timeout=timeout)

    def shutdown(self) -> None:
        with self._idle:
            if self._closed:
                return
            self._closed = True
        self._consumer.request_shutdown()
        self._queue.put(_STOP)
        self._thread.join(timeout=5.0)
        self._consumer.lane.close()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if not isinstance(item, JobMessage):
                return
            try:
                self._deliver(item)
            finally:
                with self._idle:
                    self._in_flight -= 1
                    self._idle.notify_all()

    def _deliver(self, message: JobMessage) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                self.outcomes.append(self._consumer.consume(message))
                return
            except TransientInfrastructureError as exc:
                if attempts <= self._max_retries and not self._closed:
                    logger.warning(
                        "channel.retry",
                        jobId=message.job_id,
                        attempt=attempts,
                        reason=str(exc),
                    )
                    time.sleep(self._retry_interval)
                    continue
                self._dead_letter(message, str(exc), attempts)
                return
            except JobCancelledError as exc:
                # Left in flight for the stale job reconciler.
                logger.warning("channel.cancelled", jobId=message.job_id, reason=str(exc))
                return
            except Exception as exc:
                logger.exception("channel.delivery_failed", jobId=message.job_id)
                self._dead_letter(message, str(exc), attempts)
                return

    def _dead_letter(self, message: JobMessage, reason: str, attempts: int) -> None:
        logger.error(
            "channel.dead_letter",
            jobId=message.job_id,
            simulationId=message.simulation_id,
            attempts=attempts,
            reason=reason,
        )
        self.dead_letters.append(DeadLetter(message=message, reason=reason, attempts=attempts))


class CeleryChannel:
    """Publishes job messages as Celery tasks on the simulation job queue."""

    def __init__(self, *, queue_name: Optional[str] = None) -> None:
        from ..constants import JOB_QUEUE_NAME

        self._queue_name = queue_name or JOB_QUEUE_NAME

    def publish(self, message: JobMessage) -> None:
        from kombu.exceptions import OperationalError

        from .celery_app import consume_simulation_job

        try:
            consume_simulation_job.apply_async(
                kwargs={"message": message.to_wire()},
                task_id=message.job_id,
                queue=self._queue_name,
            )
        except OperationalError as exc:
            logger.error("channel.publish_failed", jobId=message.job_id, reason=str(exc))
            raise TransientInfrastructureError(f"Message broker unavailable: {exc}") from exc

    def shutdown(self) -> None:  # pragma: no cover - Celery manages its own connections
        return None


__all__ = ["CeleryChannel", "DeadLetter", "InProcessChannel", "MessageChannel"]

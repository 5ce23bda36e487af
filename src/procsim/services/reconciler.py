"""Detection of jobs left in flight by crashed or cancelled workers."""

from __future__ import annotations

import time
from typing import Callable, List, Optional

from ..domain.models import SimulationRecord
from ..domain.status import IN_FLIGHT
from ..logging import get_logger
from ..storage import SimulationRepository

logger = get_logger(__name__)


def find_stale_jobs(
    repository: SimulationRepository,
    max_age_seconds: float,
    *,
    clock: Optional[Callable[[], float]] = None,
) -> List[SimulationRecord]:
    """Return Pending or Running records not updated for ``max_age_seconds``.

    Nothing is modified; an external watchdog decides whether to resubmit or
    fail them.
    """

    now = (clock or time.time)()
    stale = repository.find_by_status(IN_FLIGHT, updated_before=now - max_age_seconds)
    if stale:
        logger.warning(
            "job.reconciler.stale_jobs",
            count=len(stale),
            simulationIds=[record.id for record in stale],
        )
    return stale


__all__ = ["find_stale_jobs"]

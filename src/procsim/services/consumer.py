"""Worker-side orchestration of simulation jobs."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List, Optional

from prometheus_client import Counter, Histogram

from ..domain.schema import FailureKind, JobMessage, SimulationResult
from ..domain.status import SimulationStatus
from ..logging import get_logger, job_context
from ..solver import BuildError, CollectedResults, SolveOutcome, SolverError, SolverErrorCode
from ..util.concurrency import CancellationToken, JobCancelledError
from .lane import SolverLane
from .persister import Admission, ResultPersister

logger = get_logger(__name__)

_JOB_OUTCOMES = Counter(
    "procsim_jobs_total",
    "Simulation jobs handled by the worker, by outcome.",
    ("outcome",),
)
_JOB_DURATION = Histogram(
    "procsim_job_duration_seconds",
    "Wall-clock time spent processing a simulation job.",
    ("outcome",),
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0),
)


@dataclass
class JobOutcome:
    job_id: str
    simulation_id: str
    admission: Admission
    status: Optional[SimulationStatus] = None
    solve_attempted: bool = False
    result: Optional[SimulationResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return not self.admission.runs


class JobConsumer:
    """Drives Build, Solve, Collect and Persist for one message at a time.

    All solver access goes through a single ``SolverLane``; concurrent
    ``consume`` calls queue on the lane so at most one job runs per process.
    """

    def __init__(
        self,
        *,
        lane: SolverLane,
        persister: ResultPersister,
        solve_timeout_seconds: float = 60.0,
        shutdown_token: CancellationToken | None = None,
    ) -> None:
        self._lane = lane
        self._persister = persister
        self._solve_timeout = float(solve_timeout_seconds)
        self._shutdown = shutdown_token or CancellationToken()

    @property
    def lane(self) -> SolverLane:
        return self._lane

    def request_shutdown(self, reason: str = "worker shutdown") -> None:
        self._shutdown.cancel(reason)

    def consume(
        self, message: JobMessage, cancel_token: CancellationToken | None = None
    ) -> JobOutcome:
        """Process ``message``; safe to call again for the same message."""

        parents = [self._shutdown] + ([cancel_token] if cancel_token is not None else [])
        external = CancellationToken(*parents)
        # The lane cancels the solver token on timeout; only external requests abort the job.
        token = external.child()
        with job_context(message.job_id, message.simulation_id):
            with self._lane.session():
                external.raise_if_cancelled()
                decision = self._persister.mark_running(message)
                outcome = JobOutcome(
                    job_id=message.job_id,
                    simulation_id=message.simulation_id,
                    admission=decision.admission,
                )
                if not decision.admission.runs:
                    _JOB_OUTCOMES.labels(outcome=decision.admission.value).inc()
                    if decision.record is not None:
                        outcome.status = decision.record.status
                    return outcome

                started = time.perf_counter()
                try:
                    result = self._execute(message, token, external, outcome)
                    external.raise_if_cancelled()
                    outcome.result = result
                    outcome.status = self._persister.persist(message.simulation_id, result)
                except JobCancelledError as exc:
                    logger.warning("job.cancelled", reason=str(exc))
                    _JOB_OUTCOMES.labels(outcome="cancelled").inc()
                    raise
                finally:
                    self._lane.reset(timeout=self._solve_timeout)
                    logger.debug("job.solver_reset")

                label = (outcome.status or SimulationStatus.FAILED).value.lower()
                _JOB_OUTCOMES.labels(outcome=label).inc()
                _JOB_DURATION.labels(outcome=label).observe(time.perf_counter() - started)
                return outcome

    def _execute(
        self,
        message: JobMessage,
        token: CancellationToken,
        external: CancellationToken,
        outcome: JobOutcome,
    ) -> SimulationResult:
        started = time.perf_counter()
        job_id = message.job_id

        def elapsed() -> float:
            return time.perf_counter() - started

        try:
            logger.info("job.build.start", step="1/4")
            self._lane.call(
                lambda solver: solver.build(message.definition, token),
                timeout=self._solve_timeout,
                token=token,
                operation="build",
            )
            external.raise_if_cancelled()

            logger.info("job.solve.start", step="2/4")
            outcome.solve_attempted = True
            solve: SolveOutcome = self._lane.call(
                lambda solver: solver.solve(token),
                timeout=self._solve_timeout,
                token=token,
                operation="solve",
            )
            if not solve.converged:
                logger.warning("job.solve.not_converged", diagnostics=solve.diagnostics)
            external.raise_if_cancelled()

            logger.info("job.collect.start", step="3/4")
            collected = self._collect(token)
            external.raise_if_cancelled()
        except BuildError as exc:
            logger.warning("job.build.failed", errors=exc.errors)
            return SimulationResult.failure(
                job_id=job_id,
                kind=FailureKind.BUILD_FAILURE,
                message=f"Build failed: {exc.summary}",
            ).model_copy(update={"elapsed_seconds": elapsed()})
        except SolverError as exc:
            if exc.code == SolverErrorCode.TIMEOUT:
                logger.error("job.timeout", reason=str(exc.args[0]))
                kind = FailureKind.TIMEOUT
                message_text = f"Solver timed out: {exc.args[0]}"
            else:
                logger.error("job.solver_error", reason=str(exc))
                kind = FailureKind.INTERNAL_ERROR
                message_text = f"Critical error: {exc}"
            return SimulationResult.failure(
                job_id=job_id, kind=kind, message=message_text
            ).model_copy(update={"elapsed_seconds": elapsed()})
        except JobCancelledError:
            raise
        except Exception as exc:
            logger.exception("job.critical_error")
            return SimulationResult.failure(
                job_id=job_id,
                kind=FailureKind.INTERNAL_ERROR,
                message=f"Critical error: {exc}",
            ).model_copy(update={"elapsed_seconds": elapsed()})

        logger.info("job.persist.start", step="4/4", converged=solve.converged)
        outcome.warnings = list(collected.warnings)
        return SimulationResult(
            job_id=job_id,
            success=solve.converged,
            error_message=None if solve.converged else f"Solver did not converge: {solve.diagnostics}",
            failure_kind=None if solve.converged else FailureKind.SOLVE_FAILURE,
            material_streams=collected.material_streams,
            unit_operations=collected.unit_operations,
            warnings=collected.warnings,
            elapsed_seconds=elapsed(),
        )

    def _collect(self, token: CancellationToken) -> CollectedResults:
        try:
            return self._lane.call(
                lambda solver: solver.collect(),
                timeout=self._solve_timeout,
                token=token,
                operation="collect",
            )
        except SolverError as exc:
            if exc.code == SolverErrorCode.TIMEOUT:
                raise
            logger.warning("job.collect.failed", reason=str(exc))
            return CollectedResults(warnings=[f"Result collection failed: {exc}"])
        except JobCancelledError:
            raise
        except Exception as exc:
            logger.warning("job.collect.failed", reason=str(exc))
            return CollectedResults(warnings=[f"Result collection failed: {exc}"])


__all__ = ["JobConsumer", "JobOutcome"]

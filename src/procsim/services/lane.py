"""Single-owner execution lane for the non-reentrant solver handle."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from ..logging import get_logger
from ..solver import FlowsheetSolver, SolverError, SolverErrorCode
from ..util.concurrency import CancellationToken

logger = get_logger(__name__)

T = TypeVar("T")


class SolverLane:
    """Owns one solver handle and the one thread allowed to touch it.

    Every solver call is executed on the lane thread, one at a time. A job holds
    the lane for its whole Build/Solve/Collect/Reset sequence via ``session``.
    When a call exceeds its timeout the lane thread and the handle are abandoned
    and replaced so the next job gets a healthy lane.
    """

    def __init__(
        self,
        solver_factory: Callable[[], FlowsheetSolver],
        *,
        name: str = "solver-lane",
    ) -> None:
        self._factory = solver_factory
        self._name = name
        self._lock = threading.RLock()
        self._executor: ThreadPoolExecutor | None = None
        self._solver: FlowsheetSolver | None = None
        self._closed = False
        self.replacements = 0
        self._start()

    @property
    def solver(self) -> FlowsheetSolver:
        if self._solver is None:
            raise SolverError(SolverErrorCode.NOT_INITIALISED, "Solver lane is closed")
        return self._solver

    @contextmanager
    def session(self) -> Iterator["SolverLane"]:
        """Hold the lane exclusively for the duration of one job."""

        with self._lock:
            if self._closed:
                raise SolverError(SolverErrorCode.NOT_INITIALISED, "Solver lane is closed")
            yield self

    def call(
        self,
        func: Callable[[FlowsheetSolver], T],
        *,
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
        operation: str = "solver call",
    ) -> T:
        """Run ``func(solver)`` on the lane thread and wait for the result."""

        with self._lock:
            executor = self._executor
            if executor is None:
                raise SolverError(SolverErrorCode.NOT_INITIALISED, "Solver lane is closed")
            solver = self.solver
            future = executor.submit(func, solver)
            try:
                return future.result(timeout=timeout if timeout and timeout > 0 else None)
            except FuturesTimeoutError:
                if token is not None:
                    token.cancel("timeout")
                logger.warning("solver_lane.timeout", operation=operation, timeoutSeconds=timeout)
                self._replace()
                raise SolverError(
                    SolverErrorCode.TIMEOUT,
                    f"{operation} exceeded {timeout:g} seconds",
                ) from None

    def reset(self, *, timeout: Optional[float] = None) -> None:
        """Reset the solver state, replacing the handle if the reset itself fails."""

        with self._lock:
            if self._solver is None:
                return
            try:
                self.call(lambda solver: solver.reset(), timeout=timeout, operation="reset")
            except SolverError as exc:
                if exc.code != SolverErrorCode.TIMEOUT:
                    logger.warning("solver_lane.reset_failed", reason=str(exc))
                    self._replace()
            except Exception as exc:
                logger.warning("solver_lane.reset_failed", reason=str(exc))
                self._replace()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            solver, executor = self._solver, self._executor
            self._solver, self._executor = None, None
        if executor is not None and solver is not None:
            try:
                executor.submit(solver.shutdown).result(timeout=5.0)
            except Exception as exc:  # pragma: no cover - best-effort teardown
                logger.warning("solver_lane.shutdown_failed", reason=str(exc))
            executor.shutdown(wait=False, cancel_futures=True)

    def _start(self) -> None:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=self._name)

        def create() -> FlowsheetSolver:
            solver = self._factory()
            solver.init()
            return solver

        self._solver = executor.submit(create).result()
        self._executor = executor

    def _replace(self) -> None:
        stale = self._executor
        self._executor = None
        self._solver = None
        if stale is not None:
            stale.shutdown(wait=False, cancel_futures=True)
        self.replacements += 1
        logger.warning("solver_lane.replaced", replacements=self.replacements)
        self._start()


__all__ = ["SolverLane"]

from __future__ import annotations

import threading

import pytest

from procsim.services.lane import SolverLane
from procsim.solver import InMemoryFlowsheetSolver, SolverError, SolverErrorCode
from procsim.util.concurrency import CancellationToken


class RecordingSolver(InMemoryFlowsheetSolver):
    instances: list["RecordingSolver"] = []

    def __init__(self) -> None:
        super().__init__()
        self.threads: set[str] = set()
        self.shut_down = False
        RecordingSolver.instances.append(self)

    def health(self) -> dict[str, object]:
        self.threads.add(threading.current_thread().name)
        return super().health()

    def shutdown(self) -> None:
        self.shut_down = True
        super().shutdown()


@pytest.fixture(autouse=True)
def _reset_instances() -> None:
    RecordingSolver.instances = []


def test_calls_run_on_a_single_lane_thread() -> None:
    lane = SolverLane(RecordingSolver, name="test-lane")
    try:
        for _ in range(5):
            lane.call(lambda solver: solver.health())
        solver = RecordingSolver.instances[0]
        assert len(solver.threads) == 1
        assert next(iter(solver.threads)).startswith("test-lane")
        assert threading.current_thread().name not in solver.threads
    finally:
        lane.close()


def test_timeout_replaces_the_solver_and_cancels_the_token() -> None:
    release = threading.Event()
    lane = SolverLane(RecordingSolver)
    token = CancellationToken()
    try:
        with pytest.raises(SolverError) as excinfo:
            lane.call(lambda solver: release.wait(5), timeout=0.05, token=token, operation="solve")

        assert excinfo.value.code == SolverErrorCode.TIMEOUT
        assert "solve exceeded" in str(excinfo.value)
        assert token.cancelled
        assert lane.replacements == 1
        assert len(RecordingSolver.instances) == 2
        assert lane.solver is RecordingSolver.instances[1]
        assert lane.call(lambda solver: solver.health())["status"] == "initialised"
    finally:
        release.set()
        lane.close()


def test_reset_failure_replaces_the_solver() -> None:
    class BrokenReset(RecordingSolver):
        def reset(self) -> None:
            if self._built:
                raise RuntimeError("native handle corrupted")
            super().reset()

    lane = SolverLane(BrokenReset)
    try:
        first = lane.solver
        first._built = True  # simulate a built flowsheet
        lane.reset(timeout=1.0)
        assert lane.solver is not first
        assert lane.replacements == 1
    finally:
        lane.close()


def test_closed_lane_refuses_sessions() -> None:
    lane = SolverLane(RecordingSolver)
    lane.close()

    assert RecordingSolver.instances[0].shut_down
    with pytest.raises(SolverError) as excinfo:
        with lane.session():
            pass
    assert excinfo.value.code == SolverErrorCode.NOT_INITIALISED


def test_session_serialises_jobs() -> None:
    lane = SolverLane(RecordingSolver)
    order: list[str] = []
    entered = threading.Event()
    release = threading.Event()

    def first_job() -> None:
        with lane.session():
            order.append("first-start")
            entered.set()
            release.wait(5)
            order.append("first-end")

    def second_job() -> None:
        with lane.session():
            order.append("second")

    first = threading.Thread(target=first_job)
    first.start()
    entered.wait(5)
    second = threading.Thread(target=second_job)
    second.start()
    release.set()
    first.join(5)
    second.join(5)
    lane.close()

    assert order == ["first-start", "first-end", "second"]


def test_closed_lane_refuses_calls() -> None:
    lane = SolverLane(RecordingSolver)
    lane.close()

    with pytest.raises(SolverError) as excinfo:
        lane.call(lambda solver: solver.health())
    assert excinfo.value.code == SolverErrorCode.NOT_INITIALISED

"""Integration tests for the job submission, status and result endpoints."""

from __future__ import annotations

from typing import Any, Iterator, List

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from procsim.app import create_app
from procsim.config import AppConfig
from procsim.domain.schema import JobMessage
from procsim.services.producer import JobProducer


class HoldingChannel:
    """Accepts messages without delivering them, so records stay Pending."""

    def __init__(self) -> None:
        self.published: List[JobMessage] = []

    def publish(self, message: JobMessage) -> None:
        self.published.append(message)

    def shutdown(self) -> None:
        pass


@pytest.fixture
def app() -> FastAPI:
    return create_app(config=AppConfig(job_retry_interval_seconds=0.01))


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def _import(client: TestClient, payload: dict[str, Any]) -> str:
    response = client.post("/simulations/import", json=payload)
    assert response.status_code == 201
    return response.json()["id"]


def _submit_and_wait(app: FastAPI, client: TestClient, simulation_id: str) -> dict[str, Any]:
    response = client.post("/simulation_jobs", json={"simulationId": simulation_id})
    assert response.status_code == 202
    assert app.state.channel.join(timeout=10.0)
    return response.json()


def test_submit_poll_and_fetch_converged_result(
    app: FastAPI, client: TestClient, mixer_json: dict[str, Any]
) -> None:
    simulation_id = _import(client, mixer_json)

    accepted = _submit_and_wait(app, client, simulation_id)

    assert accepted["simulationId"] == simulation_id
    assert accepted["status"] == "Pending"
    assert accepted["jobId"]

    status_resp = client.get(f"/simulation_jobs/{simulation_id}/status")
    assert status_resp.status_code == 200
    status_payload = status_resp.json()
    assert status_payload["status"] == "Converged"
    assert status_payload["errorMessage"] is None
    assert status_payload["updatedAt"].endswith("Z")

    result_resp = client.get(f"/simulation_jobs/{simulation_id}/result")
    assert result_resp.status_code == 200
    result = result_resp.json()
    assert result["status"] == "Converged"
    assert result["results"]["jobId"] == accepted["jobId"]
    assert result["results"]["materialStreams"]["Product"]["massFlow"] == pytest.approx(3.0)


def test_converged_simulation_can_be_resubmitted(
    app: FastAPI, client: TestClient, mixer_json: dict[str, Any]
) -> None:
    simulation_id = _import(client, mixer_json)
    first = _submit_and_wait(app, client, simulation_id)

    second = _submit_and_wait(app, client, simulation_id)

    assert second["jobId"] > first["jobId"]
    result = client.get(f"/simulation_jobs/{simulation_id}/result").json()
    assert result["results"]["jobId"] == second["jobId"]


def test_resubmission_while_pending_is_a_conflict(
    app: FastAPI, client: TestClient, mixer_json: dict[str, Any]
) -> None:
    channel = HoldingChannel()
    app.state.producer = JobProducer(app.state.repository, channel)
    simulation_id = _import(client, mixer_json)

    first = client.post("/simulation_jobs", json={"simulationId": simulation_id})
    second = client.post("/simulation_jobs", json={"simulationId": simulation_id})

    assert first.status_code == 202
    assert second.status_code == 409
    payload = second.json()
    assert payload["error"]["code"] == "Conflict"
    assert payload["error"]["message"] == "Simulation is already in Pending state."
    assert payload["currentStatus"] == "Pending"
    assert len(channel.published) == 1

    pending = client.get(f"/simulation_jobs/{simulation_id}/result")
    assert pending.status_code == 202
    assert pending.json()["status"] == "Pending"


def test_build_failure_is_reported_as_failed(app: FastAPI, client: TestClient) -> None:
    created = client.post("/simulations", json={"name": "Unwired"})
    simulation_id = created.json()["id"]
    client.post(f"/simulations/{simulation_id}/units", json={"name": "MIX-1", "type": "Mixer"})

    _submit_and_wait(app, client, simulation_id)

    status_payload = client.get(f"/simulation_jobs/{simulation_id}/status").json()
    assert status_payload["status"] == "Failed"
    assert status_payload["errorMessage"].startswith("Build failed: ")

    result_resp = client.get(f"/simulation_jobs/{simulation_id}/result")
    assert result_resp.status_code == 400
    result = result_resp.json()
    assert result["code"] == "SimulationFailed"
    assert "has no connected streams" in result["message"]
    assert result["context"]["failureKind"] == "BuildFailure"
    assert result["context"]["suggestion"]


def test_result_before_submission_is_not_ready(client: TestClient) -> None:
    created = client.post("/simulations", json={"name": "Draft"})
    simulation_id = created.json()["id"]

    response = client.get(f"/simulation_jobs/{simulation_id}/result")

    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "SimulationNotReady"
    assert payload["context"]["status"] == "Created"


@pytest.mark.parametrize("suffix", ["status", "result"])
def test_unknown_simulation_is_not_found(client: TestClient, suffix: str) -> None:
    response = client.get(f"/simulation_jobs/missing/{suffix}")

    assert response.status_code == 404
    payload = response.json()
    assert payload["error"]["code"] == "NotFound"
    assert payload["error"]["message"] == "Simulation 'missing' not found"


def test_submitting_unknown_simulation_is_not_found(client: TestClient) -> None:
    response = client.post("/simulation_jobs", json={"simulationId": "missing"})

    assert response.status_code == 404
    assert response.json()["error"]["details"][0]["field"] == "simulationId"


@pytest.mark.parametrize("body", [{}, {"simulationId": ""}, {"simulation": "abc"}])
def test_malformed_submission_is_rejected(client: TestClient, body: dict[str, Any]) -> None:
    response = client.post("/simulation_jobs", json=body)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "InvalidInput"

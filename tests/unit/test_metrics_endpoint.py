from __future__ import annotations

from fastapi.testclient import TestClient

from procsim.app import create_app
from procsim.config import AppConfig


def test_metrics_endpoint_exposes_prometheus_payload() -> None:
    client = TestClient(create_app(config=AppConfig()))

    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.headers["cache-control"] == "no-store"
    body = response.text
    assert "procsim_http_requests_total" in body
    assert 'route="/health"' in body
    assert "procsim_jobs_total" in body
    assert "procsim_rate_limit_rejections_total" in body


def test_unknown_routes_are_labelled_unmatched() -> None:
    client = TestClient(create_app(config=AppConfig()))

    client.get("/does-not-exist")
    body = client.get("/metrics").text

    assert 'route="unmatched"' in body


def test_routes_are_labelled_with_their_templates() -> None:
    client = TestClient(create_app(config=AppConfig()))

    client.get("/simulation_jobs/missing/status")
    client.post("/simulations", json={"name": "Labelled"})
    body = client.get("/metrics").text

    assert 'route="/simulation_jobs/{simulation_id}/status"' in body
    assert 'route="/simulations",status_code="201"' in body
    assert "/simulation_jobs/missing/status" not in body

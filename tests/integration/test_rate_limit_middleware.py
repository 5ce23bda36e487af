"""Integration tests for the submission rate limit."""

from __future__ import annotations

from fastapi.testclient import TestClient

from procsim.app import create_app
from procsim.config import AppConfig


def _submit(client: TestClient):
    return client.post("/simulation_jobs", json={"simulationId": "missing"})


def test_sixteenth_submission_in_a_minute_is_rejected() -> None:
    client = TestClient(create_app(config=AppConfig()))

    allowed = [_submit(client) for _ in range(15)]
    rejected = _submit(client)

    assert {response.status_code for response in allowed} == {404}
    assert allowed[0].headers["X-RateLimit-Limit"] == "15"
    assert allowed[0].headers["X-RateLimit-Remaining"] == "14"
    assert allowed[-1].headers["X-RateLimit-Remaining"] == "0"
    assert int(allowed[0].headers["X-RateLimit-Reset"]) > 0

    assert rejected.status_code == 429
    payload = rejected.json()
    assert payload["error"] == "Rate limit exceeded"
    assert payload["message"] == "Too many requests. Maximum 15 requests per minute allowed."
    assert payload["retryAfter"] > 0
    assert int(rejected.headers["Retry-After"]) > 0
    assert rejected.headers["X-RateLimit-Remaining"] == "0"


def test_only_submissions_are_limited_by_default() -> None:
    client = TestClient(create_app(config=AppConfig(rate_limit_requests=1)))

    _submit(client)
    assert _submit(client).status_code == 429

    assert client.get("/simulation_jobs/missing/status").status_code == 404
    assert client.post("/simulations", json={"name": "Free"}).status_code == 201
    assert client.get("/health").status_code == 200


def test_scope_all_limits_every_endpoint_except_health_and_metrics() -> None:
    client = TestClient(
        create_app(config=AppConfig(rate_limit_requests=2, rate_limit_scope="all"))
    )

    client.get("/simulation_jobs/missing/status")
    client.post("/simulations", json={"name": "One"})
    limited = client.get("/simulation_jobs/missing/status")

    assert limited.status_code == 429
    assert client.get("/metrics").status_code == 200


def test_custom_window_is_described_in_seconds() -> None:
    client = TestClient(
        create_app(config=AppConfig(rate_limit_requests=1, rate_limit_window_seconds=10))
    )

    _submit(client)
    rejected = _submit(client)

    assert rejected.json()["message"] == (
        "Too many requests. Maximum 1 requests per 10 seconds allowed."
    )
    assert 0 < int(rejected.headers["Retry-After"]) <= 10


def test_disabled_backend_admits_everything() -> None:
    client = TestClient(
        create_app(config=AppConfig(rate_limit_backend="disabled", rate_limit_requests=1))
    )

    statuses = {_submit(client).status_code for _ in range(5)}

    assert statuses == {404}


def test_unreachable_redis_fails_open_without_headers() -> None:
    config = AppConfig(
        rate_limit_backend="redis",
        rate_limit_redis_url="redis://127.0.0.1:1/0",
        rate_limit_requests=1,
    )
    client = TestClient(create_app(config=config))

    responses = [_submit(client) for _ in range(3)]

    assert {response.status_code for response in responses} == {404}
    assert "X-RateLimit-Limit" not in responses[0].headers

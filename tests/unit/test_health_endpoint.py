"""Tests for the /health endpoint of the FastAPI application."""

from __future__ import annotations

from fastapi.testclient import TestClient

from procsim import __version__
from procsim.app import create_app
from procsim.config import AppConfig
from procsim.constants import CORRELATION_HEADER, SERVICE_NAME
from procsim.services.channel import InProcessChannel


def test_health_endpoint_returns_expected_payload() -> None:
    client = TestClient(create_app(config=AppConfig()))

    response = client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["service"] == SERVICE_NAME
    assert payload["version"] == __version__
    assert payload["uptimeSeconds"] >= 0
    assert payload["channelBackend"] == "thread"
    assert payload["storeBackend"] == "memory"
    assert CORRELATION_HEADER in response.headers


def test_correlation_id_header_is_preserved_from_request() -> None:
    client = TestClient(create_app(config=AppConfig()))

    response = client.get("/health", headers={CORRELATION_HEADER: "abc123"})

    assert response.status_code == 200
    assert response.headers[CORRELATION_HEADER] == "abc123"


def test_health_is_never_rate_limited() -> None:
    client = TestClient(
        create_app(config=AppConfig(rate_limit_requests=1, rate_limit_scope="all"))
    )

    statuses = {client.get("/health").status_code for _ in range(5)}

    assert statuses == {200}


def test_shutdown_stops_the_channel() -> None:
    app = create_app(config=AppConfig())
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        channel = app.state.channel
        assert isinstance(channel, InProcessChannel)

    assert not channel._thread.is_alive()

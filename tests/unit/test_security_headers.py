"""Tests for the security headers added to every response."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from procsim.app import create_app
from procsim.config import AppConfig
from procsim.security import DEFAULT_SECURITY_HEADERS, SecurityHeadersMiddleware


def test_health_response_carries_security_headers() -> None:
    client = TestClient(create_app(config=AppConfig()))

    response = client.get("/health")

    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "frame-ancestors 'none'" in response.headers["Content-Security-Policy"]


def test_error_and_rate_limited_responses_carry_security_headers() -> None:
    client = TestClient(create_app(config=AppConfig(rate_limit_requests=1)))

    missing = client.post("/simulation_jobs", json={"simulationId": "missing"})
    limited = client.post("/simulation_jobs", json={"simulationId": "missing"})

    assert missing.status_code == 404
    assert limited.status_code == 429
    for response in (missing, limited):
        for name, value in DEFAULT_SECURITY_HEADERS.items():
            assert response.headers[name] == value


def test_handler_supplied_header_is_not_overwritten() -> None:
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware, headers={"X-Frame-Options": "DENY"})

    @app.get("/embed")
    def embed() -> PlainTextResponse:
        return PlainTextResponse("ok", headers={"X-Frame-Options": "SAMEORIGIN"})

    @app.get("/plain")
    def plain() -> PlainTextResponse:
        return PlainTextResponse("ok")

    client = TestClient(app)

    assert client.get("/embed").headers["X-Frame-Options"] == "SAMEORIGIN"
    plain_response = client.get("/plain")
    assert plain_response.headers["X-Frame-Options"] == "DENY"
    assert "Content-Security-Policy" not in plain_response.headers

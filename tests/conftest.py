"""Global test fixtures and environment setup."""

from __future__ import annotations

import os
from typing import Any, Iterator

import pytest

from procsim.domain.schema import SimulationDefinition
from procsim.storage import InMemorySimulationRepository

# Keep the default configuration self-contained: no broker, no Redis, no disk.
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("CHANNEL_BACKEND", "thread")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("JOB_RETRY_INTERVAL_SECONDS", "0.01")


def mixer_payload(name: str = "Mixer flowsheet") -> dict[str, Any]:
    """Two water feeds of 1.0 and 2.0 kg/s blended into one product stream."""

    return {
        "name": name,
        "propertyPackage": "PengRobinson",
        "compounds": [
            {"id": "c-water", "name": "Water", "constantProperties": {"molecularWeight": 18.015}}
        ],
        "materialStreams": [
            {
                "id": "s-feed-1",
                "name": "Feed1",
                "temperature": 300.0,
                "pressure": 101325.0,
                "massFlow": 1.0,
                "molarCompositions": {"Water": 1.0},
            },
            {
                "id": "s-feed-2",
                "name": "Feed2",
                "temperature": 330.0,
                "pressure": 101325.0,
                "massFlow": 2.0,
                "molarCompositions": {"Water": 1.0},
            },
            {"id": "s-product", "name": "Product"},
        ],
        "unitOperations": [
            {
                "id": "u-mixer",
                "name": "MIX-100",
                "type": "Mixer",
                "inputStreamIds": ["s-feed-1", "s-feed-2"],
                "outputStreamIds": ["s-product"],
            }
        ],
    }


@pytest.fixture
def mixer_json() -> dict[str, Any]:
    return mixer_payload()


@pytest.fixture
def mixer_definition() -> SimulationDefinition:
    return SimulationDefinition.model_validate(mixer_payload())


@pytest.fixture
def repository() -> Iterator[InMemorySimulationRepository]:
    store = InMemorySimulationRepository()
    yield store
    store.close()

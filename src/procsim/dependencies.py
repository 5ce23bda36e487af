"""FastAPI dependency providers."""

from __future__ import annotations

from typing import Protocol, cast

from fastapi import Request

from .services.channel import MessageChannel
from .services.flowsheet import FlowsheetService
from .services.producer import JobProducer
from .storage import SimulationRepository


class _AppState(Protocol):
    repository: SimulationRepository
    channel: MessageChannel
    producer: JobProducer
    flowsheets: FlowsheetService
    blocking_offload: bool


def get_repository(request: Request) -> SimulationRepository:
    state = cast(_AppState, request.app.state)
    return state.repository


def get_producer(request: Request) -> JobProducer:
    state = cast(_AppState, request.app.state)
    return state.producer


def get_flowsheet_service(request: Request) -> FlowsheetService:
    state = cast(_AppState, request.app.state)
    return state.flowsheets


def should_offload_blocking(request: Request) -> bool:
    state = cast(_AppState, request.app.state)
    return getattr(state, "blocking_offload", True)

"""Job submission, status and result endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import Field

from ..dependencies import get_producer, get_repository, should_offload_blocking
from ..domain.models import SimulationRecord
from ..domain.schema import CamelModel
from ..domain.status import SimulationStatus
from ..errors import domain_error_to_http
from ..logging import get_logger
from ..services.errors import SimulationConflictError, TransientInfrastructureError
from ..services.producer import JobProducer
from ..storage import SimulationNotFoundError, SimulationRepository, StoreUnavailableError
from ..util.concurrency import maybe_to_thread

router = APIRouter(prefix="/simulation_jobs", tags=["jobs"])
logger = get_logger(__name__)

FAILED_SUGGESTION = (
    "Check the error message for details. Common issues include invalid property package "
    "settings, unconverged flash calculations, or missing stream compositions."
)


class SubmitJobRequest(CamelModel):
    simulation_id: str = Field(alias="simulationId", min_length=1)


class SubmitJobResponse(CamelModel):
    job_id: str = Field(alias="jobId")
    simulation_id: str = Field(alias="simulationId")
    status: SimulationStatus


class JobStatusResponse(CamelModel):
    simulation_id: str = Field(alias="simulationId")
    status: SimulationStatus
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    updated_at: str = Field(alias="updatedAt")


def _to_iso(timestamp: float) -> str:
    moment = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return moment.isoformat().replace("+00:00", "Z")


async def _load(request: Request, repository: SimulationRepository, simulation_id: str) -> SimulationRecord:
    try:
        return await maybe_to_thread(
            should_offload_blocking(request), repository.get, simulation_id
        )
    except (SimulationNotFoundError, StoreUnavailableError) as exc:
        raise domain_error_to_http(exc) from exc


@router.post(
    "",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def submit_job(
    payload: SubmitJobRequest,
    request: Request,
    producer: JobProducer = Depends(get_producer),
) -> SubmitJobResponse:
    try:
        job = await maybe_to_thread(
            should_offload_blocking(request), producer.submit, payload.simulation_id
        )
    except SimulationNotFoundError as exc:
        logger.info("job.submit.not_found", simulationId=payload.simulation_id)
        raise domain_error_to_http(exc) from exc
    except SimulationConflictError as exc:
        raise domain_error_to_http(exc) from exc
    except (TransientInfrastructureError, StoreUnavailableError) as exc:
        logger.warning(
            "job.submit.unavailable", simulationId=payload.simulation_id, reason=str(exc)
        )
        raise domain_error_to_http(exc) from exc

    logger.info("job.submitted", jobId=job.job_id, simulationId=job.simulation_id)
    return SubmitJobResponse(jobId=job.job_id, simulationId=job.simulation_id, status=job.status)


@router.get("/{simulation_id}/status", response_model=JobStatusResponse)
async def get_job_status(
    simulation_id: str,
    request: Request,
    repository: SimulationRepository = Depends(get_repository),
) -> JobStatusResponse:
    record = await _load(request, repository, simulation_id)
    return JobStatusResponse(
        simulationId=record.id,
        status=record.status,
        errorMessage=record.error_message,
        updatedAt=_to_iso(record.updated_at),
    )


@router.get("/{simulation_id}/result")
async def get_job_result(
    simulation_id: str,
    request: Request,
    repository: SimulationRepository = Depends(get_repository),
) -> JSONResponse:
    record = await _load(request, repository, simulation_id)
    current = record.status

    if current == SimulationStatus.CONVERGED:
        if record.result_payload is None:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND,
                content={
                    "code": "ResultsNotAvailable",
                    "message": "Simulation converged but no results are stored.",
                },
            )
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "simulationId": record.id,
                "status": current.value,
                "results": record.result_payload,
            },
        )

    if current == SimulationStatus.FAILED:
        context: dict[str, Any] = {
            "simulationId": record.id,
            "status": current.value,
            "suggestion": FAILED_SUGGESTION,
        }
        failure_kind = (record.result_payload or {}).get("failureKind")
        if failure_kind:
            context["failureKind"] = failure_kind
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "code": "SimulationFailed",
                "message": record.error_message or "Simulation failed without an error message.",
                "context": context,
            },
        )

    if current in {SimulationStatus.PENDING, SimulationStatus.RUNNING}:
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={
                "simulationId": record.id,
                "status": current.value,
                "message": "Simulation is still being processed. Please poll again later.",
            },
        )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "code": "SimulationNotReady",
            "message": (
                f"Simulation is in '{current.value}' state. "
                "Submit the job first using POST /simulation_jobs."
            ),
            "context": {"simulationId": record.id, "status": current.value},
        },
    )


__all__ = ["router"]

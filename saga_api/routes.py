"""Saga submission and status endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from saga_worker.persistence.sagas import SagaStore
from saga_worker.services.job_queue import JobQueue
from saga_worker.services.status import get_saga_view
from saga_worker.services.submission import submit_saga

from .dependencies import get_queue, get_store
from .schemas import (
    GenerateSagaRequest,
    GenerateSagaResponse,
    SagaDetailResponse,
    SagaStatusResponse,
)

router = APIRouter(prefix="/api/saga", tags=["saga"])


@router.post(
    "/generate",
    response_model=GenerateSagaResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
def generate_saga(
    payload: GenerateSagaRequest,
    store: SagaStore = Depends(get_store),
    queue: JobQueue = Depends(get_queue),
) -> GenerateSagaResponse:
    """Start generating a saga for a game, or return the one already running."""
    result = submit_saga(payload.game_id, payload.wallet_id, store=store, queue=queue)
    return GenerateSagaResponse(
        job_id=result.job_id,
        status=result.status,
        deduplicated=result.deduplicated,
    )


@router.get(
    "/{saga_id}/status",
    response_model=SagaStatusResponse,
    response_model_by_alias=True,
)
def get_saga_status(saga_id: str, store: SagaStore = Depends(get_store)) -> SagaStatusResponse:
    return SagaStatusResponse.from_view(get_saga_view(saga_id, store))


@router.get(
    "/{saga_id}",
    response_model=SagaDetailResponse,
    response_model_by_alias=True,
)
def get_saga(saga_id: str, store: SagaStore = Depends(get_store)) -> SagaDetailResponse:
    return SagaDetailResponse.from_view(get_saga_view(saga_id, store, include_panels=True))

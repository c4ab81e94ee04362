"""Worker REST API routes (Resource Ledger).

Routes:
    POST   /api/v1/workers                    - Register a worker
    GET    /api/v1/workers                    - List workers, optionally by status
    GET    /api/v1/workers/{id}               - Get worker details
    POST   /api/v1/workers/{id}/status        - Administrative status change
    POST   /api/v1/workers/{id}/release       - Clear a hold nothing else backs
    POST   /api/v1/workers/{id}/onboarding    - Advance the onboarding stage
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query

from staffing_broker.api.deps import (
    get_actor,
    get_app_settings,
    get_clock,
    get_runner,
    require_back_office,
)
from staffing_broker.config import Settings
from staffing_broker.domain.clock import Clock
from staffing_broker.domain.collaborators import Actor
from staffing_broker.domain.enums import WorkerStatus
from staffing_broker.infrastructure.database.transactions import TransactionRunner
from staffing_broker.schemas.workers import (
    AdvanceOnboardingRequest,
    ChangeWorkerStatusRequest,
    RegisterWorkerRequest,
    ReleaseWorkerRequest,
    WorkerResponse,
)
from staffing_broker.services.worker_ledger import WorkerLedger

router = APIRouter(prefix="/api/v1/workers", tags=["Workers"])


@router.post("", response_model=WorkerResponse, status_code=201, summary="Register a worker")
async def register_worker(
    body: RegisterWorkerRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerResponse:
    require_back_office(actor, settings)
    worker = await runner.run(
        lambda s: WorkerLedger(s, clock).register_worker(
            **body.model_dump(), actor=actor
        ),
        name="worker.register",
    )
    return WorkerResponse.model_validate(worker)


@router.get("", response_model=list[WorkerResponse], summary="List workers")
async def list_workers(
    status: WorkerStatus | None = Query(default=None),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
) -> list[WorkerResponse]:
    workers = await runner.run(
        lambda s: WorkerLedger(s, clock).list_workers(status), name="worker.list"
    )
    return [WorkerResponse.model_validate(w) for w in workers]


@router.get("/{worker_id}", response_model=WorkerResponse, summary="Get worker details")
async def get_worker(
    worker_id: uuid.UUID,
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
) -> WorkerResponse:
    worker = await runner.run(
        lambda s: WorkerLedger(s, clock).get_worker(worker_id), name="worker.get"
    )
    return WorkerResponse.model_validate(worker)


@router.post(
    "/{worker_id}/status",
    response_model=WorkerResponse,
    summary="Put on leave, return, block, deactivate or terminate a worker",
)
async def change_worker_status(
    worker_id: uuid.UUID,
    body: ChangeWorkerStatusRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerResponse:
    require_back_office(actor, settings)
    worker = await runner.run(
        lambda s: WorkerLedger(s, clock).change_status(
            worker_id, body.event, actor, reason=body.reason
        ),
        name="worker.change_status",
    )
    return WorkerResponse.model_validate(worker)


@router.post("/{worker_id}/release", response_model=WorkerResponse, summary="Release a worker")
async def release_worker(
    worker_id: uuid.UUID,
    body: ReleaseWorkerRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerResponse:
    """Clear a stale hold.

    Refused while a live reservation or open contract holds the worker.
    """
    require_back_office(actor, settings)
    worker = await runner.run(
        lambda s: WorkerLedger(s, clock).release_unowned_hold(worker_id, actor, reason=body.reason),
        name="worker.release",
    )
    return WorkerResponse.model_validate(worker)


@router.post(
    "/{worker_id}/onboarding",
    response_model=WorkerResponse,
    summary="Advance the worker to the next onboarding stage",
)
async def advance_onboarding(
    worker_id: uuid.UUID,
    body: AdvanceOnboardingRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerResponse:
    require_back_office(actor, settings)
    worker = await runner.run(
        lambda s: WorkerLedger(s, clock).advance_onboarding(worker_id, body.next_stage, actor),
        name="worker.advance_onboarding",
    )
    return WorkerResponse.model_validate(worker)

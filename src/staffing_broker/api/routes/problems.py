"""Worker incident report REST API routes.

Routes:
    POST   /api/v1/worker-problems                 - Report a problem
    GET    /api/v1/worker-problems?worker_id=...   - List a worker's problems
    POST   /api/v1/worker-problems/{id}/approve    - Resolver: approve
    POST   /api/v1/worker-problems/{id}/reject     - Resolver: reject
    POST   /api/v1/worker-problems/{id}/resolve    - Resolver: close with an action
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
from staffing_broker.infrastructure.database.transactions import TransactionRunner
from staffing_broker.schemas.problems import (
    RejectProblemRequest,
    ReportProblemRequest,
    ResolveProblemRequest,
    WorkerProblemResponse,
)
from staffing_broker.services.worker_problem_service import WorkerProblemService

router = APIRouter(prefix="/api/v1/worker-problems", tags=["Worker Problems"])


@router.post("", response_model=WorkerProblemResponse, status_code=201, summary="Report a problem")
async def report_problem(
    body: ReportProblemRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerProblemResponse:
    require_back_office(actor, settings)
    problem = await runner.run(
        lambda s: WorkerProblemService(s, clock, settings).report(
            body.worker_id, body.problem_type, body.description, body.date_reported, actor
        ),
        name="worker_problem.report",
    )
    return WorkerProblemResponse.model_validate(problem)


@router.get("", response_model=list[WorkerProblemResponse], summary="List a worker's problems")
async def list_problems(
    worker_id: uuid.UUID = Query(...),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> list[WorkerProblemResponse]:
    problems = await runner.run(
        lambda s: WorkerProblemService(s, clock, settings).list_for_worker(worker_id),
        name="worker_problem.list",
    )
    return [WorkerProblemResponse.model_validate(p) for p in problems]


@router.post("/{problem_id}/approve", response_model=WorkerProblemResponse, summary="Approve")
async def approve_problem(
    problem_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerProblemResponse:
    problem = await runner.run(
        lambda s: WorkerProblemService(s, clock, settings).approve(problem_id, actor),
        name="worker_problem.approve",
    )
    return WorkerProblemResponse.model_validate(problem)


@router.post("/{problem_id}/reject", response_model=WorkerProblemResponse, summary="Reject")
async def reject_problem(
    problem_id: uuid.UUID,
    body: RejectProblemRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerProblemResponse:
    problem = await runner.run(
        lambda s: WorkerProblemService(s, clock, settings).reject(problem_id, actor, body.notes),
        name="worker_problem.reject",
    )
    return WorkerProblemResponse.model_validate(problem)


@router.post("/{problem_id}/resolve", response_model=WorkerProblemResponse, summary="Resolve")
async def resolve_problem(
    problem_id: uuid.UUID,
    body: ResolveProblemRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> WorkerProblemResponse:
    problem = await runner.run(
        lambda s: WorkerProblemService(s, clock, settings).resolve(
            problem_id, body.action, actor, body.notes
        ),
        name="worker_problem.resolve",
    )
    return WorkerProblemResponse.model_validate(problem)

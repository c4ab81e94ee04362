"""Operational REST API routes.

Routes:
    POST   /api/v1/admin/sweeps                       - Run one expiry sweeper tick
    GET    /api/v1/admin/audit/{entity_kind}/{id}     - Audit trail of an entity
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from staffing_broker.api.deps import (
    get_actor,
    get_app_settings,
    get_clock,
    get_runner,
    require_back_office,
)
from staffing_broker.config import Settings
from staffing_broker.domain.clock import Clock
from staffing_broker.domain.collaborators import Actor, EntityRef
from staffing_broker.domain.enums import EntityKind
from staffing_broker.infrastructure.database.repositories import EventRepository
from staffing_broker.infrastructure.database.transactions import TransactionRunner
from staffing_broker.infrastructure.redis_client import get_redis_or_none, sweeper_lock
from staffing_broker.schemas.common import AuditEventResponse, SweepReportResponse
from staffing_broker.services.expiry_sweeper import ExpirySweeper, SweepReport

router = APIRouter(prefix="/api/v1/admin", tags=["Admin"])


@router.post(
    "/sweeps",
    response_model=SweepReportResponse,
    summary="Run one expiry sweep",
    description="For external schedulers. Skipped (all zeros) while another process holds the sweeper lock.",
)
async def run_sweep(
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> SweepReportResponse:
    require_back_office(actor, settings)
    report = SweepReport()
    async with sweeper_lock(get_redis_or_none()) as acquired:
        if acquired:
            report = await ExpirySweeper(runner, clock, settings).sweep()
    return SweepReportResponse(**report.as_dict())


@router.get(
    "/audit/{entity_kind}/{entity_id}",
    response_model=list[AuditEventResponse],
    summary="Get the audit trail of an entity",
)
async def get_audit_trail(
    entity_kind: EntityKind,
    entity_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    settings: Settings = Depends(get_app_settings),
) -> list[AuditEventResponse]:
    require_back_office(actor, settings)
    events = await runner.run(
        lambda s: EventRepository(s).get_for_entity(EntityRef(entity_kind, entity_id)),
        name="audit.get",
    )
    return [AuditEventResponse.model_validate(e) for e in events]

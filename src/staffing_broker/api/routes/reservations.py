"""Reservation REST API routes.

Routes:
    POST   /api/v1/reservations                - Reserve a Ready worker
    GET    /api/v1/reservations                - List the caller's reservations
    GET    /api/v1/reservations/{id}           - Get a reservation (expires it if lapsed)
    POST   /api/v1/reservations/{id}/process   - Back office: approve / reject / extend
    POST   /api/v1/reservations/{id}/cancel    - Customer cancellation
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
from staffing_broker.domain.enums import ReservationState
from staffing_broker.infrastructure.database.transactions import TransactionRunner
from staffing_broker.logging_config import get_logger
from staffing_broker.schemas.reservations import (
    CancelReservationRequest,
    ProcessReservationRequest,
    ReservationResponse,
    ReserveWorkerRequest,
)
from staffing_broker.services.reservation_service import ReservationService

router = APIRouter(prefix="/api/v1/reservations", tags=["Reservations"])
logger = get_logger(__name__)


@router.post(
    "",
    response_model=ReservationResponse,
    status_code=201,
    summary="Reserve a worker",
)
async def reserve_worker(
    body: ReserveWorkerRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ReservationResponse:
    """Claim a Ready worker for the calling customer.

    Fails with NOT_AVAILABLE when the worker is held by anyone else.
    """
    reservation = await runner.run(
        lambda s: ReservationService(s, clock, settings).reserve(
            body.worker_id, actor.id, body.start_date, body.end_date
        ),
        name="reservation.reserve",
    )
    return ReservationResponse.model_validate(reservation)


@router.get("", response_model=list[ReservationResponse], summary="List my reservations")
async def list_reservations(
    state: ReservationState | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> list[ReservationResponse]:
    reservations = await runner.run(
        lambda s: ReservationService(s, clock, settings).list_for_customer(actor.id, state),
        name="reservation.list",
    )
    return [ReservationResponse.model_validate(r) for r in reservations]


@router.get("/{reservation_id}", response_model=ReservationResponse, summary="Get a reservation")
async def get_reservation(
    reservation_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ReservationResponse:
    customer_id = None if actor.has_any_role(settings.back_office_roles) else actor.id
    reservation = await runner.run(
        lambda s: ReservationService(s, clock, settings).get(reservation_id, customer_id),
        name="reservation.get",
    )
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/process",
    response_model=ReservationResponse,
    summary="Approve, reject or extend a reservation",
)
async def process_reservation(
    reservation_id: uuid.UUID,
    body: ProcessReservationRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ReservationResponse:
    require_back_office(actor, settings)
    reservation = await runner.run(
        lambda s: ReservationService(s, clock, settings).process(
            reservation_id,
            body.action,
            actor,
            notes=body.notes,
            extension_minutes=body.extension_minutes,
        ),
        name=f"reservation.{body.action}",
    )
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/cancel",
    response_model=ReservationResponse,
    summary="Cancel my reservation",
)
async def cancel_reservation(
    reservation_id: uuid.UUID,
    body: CancelReservationRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ReservationResponse:
    reservation = await runner.run(
        lambda s: ReservationService(s, clock, settings).cancel(
            reservation_id, actor.id, body.reason
        ),
        name="reservation.cancel",
    )
    logger.info("api.reservation_cancelled", reservation_id=str(reservation_id))
    return ReservationResponse.model_validate(reservation)

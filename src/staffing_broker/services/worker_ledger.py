"""Resource Ledger - the single authority over Worker.status.

Every change to a worker's availability goes through this service, which
fires the WorkerStateMachine and writes the audit event in the caller's
transaction. No other service assigns ``Worker.status``.

The claim is the system's central guarantee: reading the worker row under
lock, checking it is exactly Ready and writing the hold plus the
reservation happen in one transaction. The worker write is flushed first,
so a concurrent claim that slipped past the row lock (SQLite, or a stale
identity map) fails on the version check or on the active-reservation
unique index, and is reported as WorkerUnavailable.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import SYSTEM_ACTOR, EntityRef
from staffing_broker.domain.enums import (
    HELD_WORKER_STATUSES,
    EntityKind,
    EventType,
    OnboardingStage,
    ReservationState,
    WorkerStatus,
)
from staffing_broker.domain.exceptions import (
    AlreadyExistsError,
    EntityNotFoundError,
    InvalidStateTransitionError,
    NotProcessableError,
    WorkerUnavailableError,
)
from staffing_broker.domain.state_machine import (
    OnboardingStateMachine,
    WorkerStateMachine,
    fire_transition,
)
from staffing_broker.infrastructure.database.orm_models import Worker, WorkerReservation
from staffing_broker.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    ReservationRepository,
    WorkerRepository,
)
from staffing_broker.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from datetime import date, datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from staffing_broker.domain.collaborators import Actor

logger = get_logger(__name__)

# Administrative events and the status each one targets, for error messages
_ADMIN_EVENTS = {
    "put_on_leave": WorkerStatus.ON_LEAVE,
    "return_from_leave": WorkerStatus.READY,
    "block": WorkerStatus.BLOCKED,
    "deactivate": WorkerStatus.INACTIVE,
    "terminate": WorkerStatus.TERMINATED,
}


class WorkerLedger:
    """Manages worker availability and onboarding."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._worker_repo = WorkerRepository(session)
        self._reservation_repo = ReservationRepository(session)
        self._contract_repo = ContractRepository(session)
        self._event_repo = EventRepository(session)

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def register_worker(
        self,
        worker_number: str,
        name: str,
        *,
        nationality_code: str | None = None,
        profession_code: str | None = None,
        agency_id: str | None = None,
        experience_years: int = 0,
        experience_summary: str | None = None,
        recruitment_request_id: uuid.UUID | None = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Worker:
        """Create a worker in Ready, at the first onboarding stage."""
        if await self._worker_repo.get_by_number(worker_number) is not None:
            raise AlreadyExistsError(
                f"Worker number already registered: {worker_number}",
                details={"worker_number": worker_number},
            )

        worker = Worker(
            worker_number=worker_number,
            name=name,
            nationality_code=nationality_code,
            profession_code=profession_code,
            agency_id=agency_id,
            experience_years=experience_years,
            experience_summary=experience_summary,
            recruitment_request_id=recruitment_request_id,
            status=WorkerStatus.READY,
            onboarding_stage=OnboardingStage.MEDICAL_CHECK,
        )
        worker = await self._worker_repo.create(worker)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.WORKER, worker.id),
            event_type=EventType.WORKER_REGISTERED,
            old_status=None,
            new_status=worker.status,
            actor=actor.id,
            metadata={"worker_number": worker_number},
        )

        logger.info("worker.registered", worker_id=str(worker.id), worker_number=worker_number)
        return worker

    async def get_worker(self, worker_id: uuid.UUID) -> Worker:
        return await self._get_worker_or_raise(worker_id)

    async def list_workers(self, status: WorkerStatus | None = None) -> list[Worker]:
        return await self._worker_repo.list_by_status(status)

    # ------------------------------------------------------------------
    # Claim / hold / release
    # ------------------------------------------------------------------

    async def try_claim(
        self,
        worker_id: uuid.UUID,
        customer_id: str,
        start_date: date,
        end_date: date,
        expires_at: datetime,
    ) -> WorkerReservation:
        """Atomically move a Ready worker into a hold and create its reservation.

        Raises:
            WorkerUnavailableError: The worker is not Ready, or a concurrent
                claim won the race.
        """
        worker = await self._worker_repo.get_for_update(worker_id)
        if worker is None:
            raise EntityNotFoundError(EntityKind.WORKER, worker_id)
        if worker.status != WorkerStatus.READY:
            raise WorkerUnavailableError(worker_id, worker.status)

        old_status = worker.status
        worker.status = fire_transition(WorkerStateMachine, worker.status, "claim")
        try:
            # Worker write first: the version check fails here if we lost the race
            await self._session.flush()
            reservation = await self._reservation_repo.create(
                WorkerReservation(
                    worker_id=worker.id,
                    customer_id=customer_id,
                    start_date=start_date,
                    end_date=end_date,
                    state=ReservationState.AWAITING_CONTRACT,
                    expires_at=expires_at,
                )
            )
        except IntegrityError as exc:
            raise WorkerUnavailableError(worker_id) from exc

        await self._record_status(worker, old_status, customer_id, reservation_id=reservation.id)
        logger.info(
            "worker.claimed",
            worker_id=str(worker_id),
            customer_id=customer_id,
            reservation_id=str(reservation.id),
        )
        return reservation

    async def confirm_hold(self, worker_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR) -> Worker:
        """ReservedAwaitingContract -> ReservedAwaitingPayment."""
        return await self._transition(
            worker_id, "confirm", WorkerStatus.RESERVED_AWAITING_PAYMENT, actor
        )

    async def link_contract(self, worker_id: uuid.UUID, contract_id: uuid.UUID) -> Worker:
        """Record which contract holds the worker. Status is unchanged."""
        worker = await self._get_worker_for_update(worker_id)
        worker.current_contract_id = contract_id
        await self._worker_repo.save(worker)
        return worker

    async def assign(
        self,
        worker_id: uuid.UUID,
        contract_id: uuid.UUID,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Worker:
        """Put the worker on an active contract. Re-activation of the same contract is a no-op."""
        worker = await self._get_worker_for_update(worker_id)
        if (
            worker.status == WorkerStatus.ASSIGNED_TO_CONTRACT
            and worker.current_contract_id == contract_id
        ):
            return worker

        old_status = worker.status
        worker.status = fire_transition(
            WorkerStateMachine,
            worker.status,
            "assign",
            target=WorkerStatus.ASSIGNED_TO_CONTRACT,
        )
        worker.current_contract_id = contract_id
        await self._worker_repo.save(worker)
        await self._record_status(worker, old_status, actor.id, contract_id=contract_id)
        logger.info("worker.assigned", worker_id=str(worker_id), contract_id=str(contract_id))
        return worker

    async def release(
        self,
        worker_id: uuid.UUID,
        actor: Actor = SYSTEM_ACTOR,
        reason: str | None = None,
    ) -> Worker:
        """Return a held worker to Ready.

        Idempotent: a Ready worker stays Ready, and Blocked, Inactive, OnLeave
        and Terminated workers keep their status. The contract back-reference
        is always cleared.
        """
        worker = await self._get_worker_for_update(worker_id)
        worker.current_contract_id = None

        if worker.status not in HELD_WORKER_STATUSES:
            await self._worker_repo.save(worker)
            logger.debug("worker.release_noop", worker_id=str(worker_id), status=worker.status)
            return worker

        old_status = worker.status
        worker.status = fire_transition(WorkerStateMachine, worker.status, "release")
        await self._worker_repo.save(worker)
        await self._record_status(worker, old_status, actor.id, reason=reason)
        logger.info("worker.released", worker_id=str(worker_id), previous_status=old_status)
        return worker

    async def release_unowned_hold(
        self,
        worker_id: uuid.UUID,
        actor: Actor = SYSTEM_ACTOR,
        reason: str | None = None,
    ) -> Worker:
        """Back-office release of a hold that no live reservation or open contract backs.

        A worker held by an active reservation or a non-terminal contract is
        released by cancelling that entity, so this refuses with
        NotProcessable instead.
        """
        worker = await self._get_worker_for_update(worker_id)
        reservation = await self._reservation_repo.get_active_for_worker(worker_id)
        if reservation is not None:
            raise NotProcessableError(
                "Worker is held by an active reservation; cancel the reservation instead",
                details={"worker_id": str(worker_id), "reservation_id": str(reservation.id)},
            )
        contract = await self._contract_repo.get_open_for_worker(worker_id)
        if contract is not None:
            raise NotProcessableError(
                "Worker is held by an open contract; cancel or end the contract instead",
                details={"worker_id": str(worker_id), "contract_id": str(contract.id)},
            )
        return await self.release(worker.id, actor, reason=reason)

    # ------------------------------------------------------------------
    # Administrative status changes
    # ------------------------------------------------------------------

    async def change_status(
        self,
        worker_id: uuid.UUID,
        event_name: str,
        actor: Actor = SYSTEM_ACTOR,
        reason: str | None = None,
    ) -> Worker:
        """Fire one of put_on_leave, return_from_leave, block, deactivate, terminate."""
        if event_name not in _ADMIN_EVENTS:
            raise ValueError(f"Unknown worker status event '{event_name}'")
        worker = await self._transition(
            worker_id, event_name, _ADMIN_EVENTS[event_name], actor, reason=reason
        )
        if worker.status in (WorkerStatus.INACTIVE, WorkerStatus.TERMINATED):
            worker.current_contract_id = None
            await self._worker_repo.save(worker)
        return worker

    async def block(self, worker_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR, reason: str | None = None) -> Worker:
        return await self.change_status(worker_id, "block", actor, reason)

    async def deactivate(self, worker_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR, reason: str | None = None) -> Worker:
        return await self.change_status(worker_id, "deactivate", actor, reason)

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------

    async def advance_onboarding(
        self,
        worker_id: uuid.UUID,
        next_stage: OnboardingStage,
        actor: Actor = SYSTEM_ACTOR,
    ) -> Worker:
        """Move the worker to the stage directly after its current one."""
        worker = await self._get_worker_for_update(worker_id)
        if worker.status in (WorkerStatus.INACTIVE, WorkerStatus.TERMINATED):
            raise NotProcessableError(
                f"Cannot advance onboarding of a worker in {worker.status}",
                details={"worker_id": str(worker_id), "status": worker.status},
            )

        current = OnboardingStage(worker.onboarding_stage)
        if current.successor != next_stage:
            raise InvalidStateTransitionError(current, next_stage)

        worker.onboarding_stage = fire_transition(
            OnboardingStateMachine, current, "advance", target=next_stage
        )
        await self._worker_repo.save(worker)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.WORKER, worker.id),
            event_type=EventType.WORKER_ONBOARDING_ADVANCED,
            old_status=current,
            new_status=worker.onboarding_stage,
            actor=actor.id,
        )
        logger.info(
            "worker.onboarding_advanced",
            worker_id=str(worker_id),
            stage=worker.onboarding_stage,
        )
        return worker

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        worker_id: uuid.UUID,
        event_name: str,
        target: WorkerStatus,
        actor: Actor,
        reason: str | None = None,
    ) -> Worker:
        worker = await self._get_worker_for_update(worker_id)
        old_status = worker.status
        worker.status = fire_transition(
            WorkerStateMachine, worker.status, event_name, target=target
        )
        await self._worker_repo.save(worker)
        await self._record_status(worker, old_status, actor.id, reason=reason)
        logger.info(
            "worker.status_changed",
            worker_id=str(worker_id),
            old_status=old_status,
            new_status=worker.status,
        )
        return worker

    async def _record_status(
        self,
        worker: Worker,
        old_status: str,
        actor_id: str,
        **metadata: object,
    ) -> None:
        await self._event_repo.record(
            subject=EntityRef(EntityKind.WORKER, worker.id),
            event_type=EventType.WORKER_STATUS_CHANGED,
            old_status=old_status,
            new_status=worker.status,
            actor=actor_id,
            metadata={k: v for k, v in metadata.items() if v is not None} or None,
        )

    async def _get_worker_or_raise(self, worker_id: uuid.UUID) -> Worker:
        worker = await self._worker_repo.get_by_id(worker_id)
        if worker is None:
            raise EntityNotFoundError(EntityKind.WORKER, worker_id)
        return worker

    async def _get_worker_for_update(self, worker_id: uuid.UUID) -> Worker:
        worker = await self._worker_repo.get_for_update(worker_id)
        if worker is None:
            raise EntityNotFoundError(EntityKind.WORKER, worker_id)
        return worker

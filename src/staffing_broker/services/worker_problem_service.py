"""Worker incident reports.

Staff report a problem against a worker who holds a contract. An escape
blocks the worker immediately; a resolution of Dismissal deactivates it.
Approving, rejecting and resolving reports is limited to resolver roles.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from staffing_broker.config import Settings, get_settings
from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import EntityRef
from staffing_broker.domain.enums import (
    EntityKind,
    EventType,
    ProblemStatus,
    ProblemType,
    ResolutionAction,
    WorkerStatus,
)
from staffing_broker.domain.exceptions import (
    DomainValidationError,
    EntityNotFoundError,
    NotProcessableError,
    UnauthorizedError,
)
from staffing_broker.domain.state_machine import WorkerProblemStateMachine, fire_transition
from staffing_broker.infrastructure.database.orm_models import WorkerProblem
from staffing_broker.infrastructure.database.repositories import (
    EventRepository,
    WorkerProblemRepository,
    WorkerRepository,
)
from staffing_broker.logging_config import get_logger
from staffing_broker.services.worker_ledger import WorkerLedger

if TYPE_CHECKING:
    import uuid
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession

    from staffing_broker.domain.collaborators import Actor

logger = get_logger(__name__)

_CONTRACTED_STATUSES = frozenset(
    {WorkerStatus.RESERVED_AWAITING_PAYMENT, WorkerStatus.ASSIGNED_TO_CONTRACT}
)


class WorkerProblemService:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._problem_repo = WorkerProblemRepository(session)
        self._worker_repo = WorkerRepository(session)
        self._event_repo = EventRepository(session)
        self._ledger = WorkerLedger(session, self._clock)

    async def report(
        self,
        worker_id: uuid.UUID,
        problem_type: ProblemType,
        description: str,
        date_reported: date,
        actor: Actor,
    ) -> WorkerProblem:
        """File a Pending report. An escape blocks the worker in the same transaction."""
        if not description or not description.strip():
            raise DomainValidationError("A problem description is required")
        if date_reported > self._clock.now().date():
            raise DomainValidationError("Report date cannot be in the future")

        worker = await self._worker_repo.get_for_update(worker_id)
        if worker is None:
            raise EntityNotFoundError(EntityKind.WORKER, worker_id)
        if worker.status not in _CONTRACTED_STATUSES:
            raise NotProcessableError(
                "Problems can only be reported for contracted workers",
                details={"worker_id": str(worker_id), "status": worker.status},
            )

        problem_type = ProblemType(problem_type)
        problem = await self._problem_repo.create(
            WorkerProblem(
                worker_id=worker.id,
                contract_id=worker.current_contract_id,
                problem_type=problem_type,
                description=description.strip(),
                date_reported=date_reported,
                status=ProblemStatus.PENDING,
                created_by=actor.id,
            )
        )
        await self._event_repo.record(
            subject=EntityRef(EntityKind.WORKER_PROBLEM, problem.id),
            event_type=EventType.PROBLEM_REPORTED,
            old_status=None,
            new_status=problem.status,
            actor=actor.id,
            metadata={"worker_id": worker.id, "problem_type": problem_type},
        )

        if problem_type is ProblemType.ESCAPE:
            await self._ledger.block(worker.id, actor, reason="worker escaped")

        logger.info(
            "worker_problem.reported",
            problem_id=str(problem.id),
            worker_id=str(worker_id),
            problem_type=problem_type.value,
        )
        return problem

    async def approve(self, problem_id: uuid.UUID, actor: Actor) -> WorkerProblem:
        self._require_resolver(actor)
        problem = await self._get_for_update_or_raise(problem_id)
        problem.approved_by = actor.id
        problem.approved_at = self._clock.now()
        return await self._transition(problem, "approve", ProblemStatus.APPROVED, EventType.PROBLEM_APPROVED, actor)

    async def reject(self, problem_id: uuid.UUID, actor: Actor, notes: str | None = None) -> WorkerProblem:
        self._require_resolver(actor)
        problem = await self._get_for_update_or_raise(problem_id)
        if notes:
            problem.resolution_notes = notes
        return await self._transition(problem, "reject", ProblemStatus.REJECTED, EventType.PROBLEM_REJECTED, actor)

    async def resolve(
        self,
        problem_id: uuid.UUID,
        action: ResolutionAction,
        actor: Actor,
        notes: str | None = None,
    ) -> WorkerProblem:
        """Close an Approved report. Dismissal deactivates the worker."""
        self._require_resolver(actor)
        problem = await self._get_for_update_or_raise(problem_id)
        if problem.status != ProblemStatus.APPROVED:
            raise NotProcessableError(
                "Only approved problems can be resolved",
                details={"problem_id": str(problem_id), "status": problem.status},
            )

        action = ResolutionAction(action)
        problem.resolution_action = action
        problem.resolution_notes = notes
        problem.resolved_at = self._clock.now()
        problem = await self._transition(
            problem, "resolve", ProblemStatus.CLOSED, EventType.PROBLEM_RESOLVED, actor
        )

        if action is ResolutionAction.DISMISSAL:
            await self._ledger.deactivate(problem.worker_id, actor, reason="dismissed")
        return problem

    async def list_for_worker(self, worker_id: uuid.UUID) -> list[WorkerProblem]:
        return await self._problem_repo.list_for_worker(worker_id)

    def _require_resolver(self, actor: Actor) -> None:
        if not actor.has_any_role(self._settings.problem_resolver_roles):
            raise UnauthorizedError("Only authorized staff can review worker problems")

    async def _transition(
        self,
        problem: WorkerProblem,
        event_name: str,
        target: ProblemStatus,
        event_type: EventType,
        actor: Actor,
    ) -> WorkerProblem:
        old_status = problem.status
        problem.status = fire_transition(
            WorkerProblemStateMachine, problem.status, event_name, target=target
        )
        await self._problem_repo.save(problem)
        await self._event_repo.record(
            subject=EntityRef(EntityKind.WORKER_PROBLEM, problem.id),
            event_type=event_type,
            old_status=old_status,
            new_status=problem.status,
            actor=actor.id,
            metadata={"resolution_action": problem.resolution_action},
        )
        logger.info(
            "worker_problem.status_changed",
            problem_id=str(problem.id),
            old_status=old_status,
            new_status=problem.status,
        )
        return problem

    async def _get_for_update_or_raise(self, problem_id: uuid.UUID) -> WorkerProblem:
        problem = await self._problem_repo.get_for_update(problem_id)
        if problem is None:
            raise EntityNotFoundError(EntityKind.WORKER_PROBLEM, problem_id)
        return problem

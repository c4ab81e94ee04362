"""Tests for worker incident reports and their effect on availability."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import STAFF
from staffing_broker.domain.collaborators import Actor
from staffing_broker.domain.enums import (
    ContractStatus,
    ProblemStatus,
    ProblemType,
    ResolutionAction,
    WorkerStatus,
)
from staffing_broker.domain.exceptions import (
    DomainValidationError,
    InvalidStateTransitionError,
    NotProcessableError,
    UnauthorizedError,
)
from staffing_broker.infrastructure.database.orm_models import Worker
from staffing_broker.services.contract_service import ContractService
from staffing_broker.services.worker_problem_service import WorkerProblemService

SALES = Actor(id="sales-1", roles=frozenset({"sales"}))


@pytest.fixture
def problems(factory):  # noqa: ANN001, ANN201
    return lambda s: WorkerProblemService(s, factory.clock, factory.settings)


async def _active_contract(factory):  # noqa: ANN001, ANN202
    contract = await factory.contract(payment_on_signing=False)
    return await factory.runner.run(
        lambda s: ContractService(s, factory.clock, factory.settings).transition_status(
            contract.id, ContractStatus.ACTIVE, STAFF
        )
    )


async def _report(factory, problems, worker_id, problem_type=ProblemType.REFUSAL):  # noqa: ANN001, ANN202
    today = factory.clock.now().date()
    return await factory.runner.run(
        lambda s: problems(s).report(worker_id, problem_type, "Refused to work", today, SALES)
    )


class TestReport:
    @pytest.mark.asyncio
    async def test_report_against_contracted_worker(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)

        problem = await _report(factory, problems, contract.worker_id)

        assert problem.status == ProblemStatus.PENDING
        assert problem.contract_id == contract.id
        assert problem.created_by == SALES.id
        worker = await factory.reload(Worker, contract.worker_id)
        assert worker.status == WorkerStatus.ASSIGNED_TO_CONTRACT

    @pytest.mark.asyncio
    async def test_escape_blocks_worker(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)

        await _report(factory, problems, contract.worker_id, ProblemType.ESCAPE)

        worker = await factory.reload(Worker, contract.worker_id)
        assert worker.status == WorkerStatus.BLOCKED

    @pytest.mark.asyncio
    async def test_ready_worker_cannot_be_reported(self, factory, problems) -> None:  # noqa: ANN001
        worker = await factory.worker()

        with pytest.raises(NotProcessableError):
            await _report(factory, problems, worker.id)

    @pytest.mark.asyncio
    async def test_future_report_date_rejected(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)
        tomorrow = factory.clock.now().date() + timedelta(days=1)

        with pytest.raises(DomainValidationError):
            await factory.runner.run(
                lambda s: problems(s).report(
                    contract.worker_id, ProblemType.MISCONDUCT, "Fight", tomorrow, SALES
                )
            )


class TestReview:
    @pytest.mark.asyncio
    async def test_dismissal_deactivates_worker(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)
        problem = await _report(factory, problems, contract.worker_id)

        approved = await factory.runner.run(lambda s: problems(s).approve(problem.id, STAFF))
        assert approved.status == ProblemStatus.APPROVED
        assert approved.approved_by == STAFF.id

        closed = await factory.runner.run(
            lambda s: problems(s).resolve(problem.id, ResolutionAction.DISMISSAL, STAFF, "final")
        )
        assert closed.status == ProblemStatus.CLOSED
        assert closed.resolution_action == ResolutionAction.DISMISSAL
        worker = await factory.reload(Worker, contract.worker_id)
        assert worker.status == WorkerStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_retraining_keeps_worker(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)
        problem = await _report(factory, problems, contract.worker_id)
        await factory.runner.run(lambda s: problems(s).approve(problem.id, STAFF))

        await factory.runner.run(
            lambda s: problems(s).resolve(problem.id, ResolutionAction.RE_TRAINING, STAFF)
        )

        worker = await factory.reload(Worker, contract.worker_id)
        assert worker.status == WorkerStatus.ASSIGNED_TO_CONTRACT

    @pytest.mark.asyncio
    async def test_only_resolver_roles_review(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)
        problem = await _report(factory, problems, contract.worker_id)

        with pytest.raises(UnauthorizedError):
            await factory.runner.run(lambda s: problems(s).approve(problem.id, SALES))

    @pytest.mark.asyncio
    async def test_pending_problem_cannot_be_resolved(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)
        problem = await _report(factory, problems, contract.worker_id)

        with pytest.raises(NotProcessableError):
            await factory.runner.run(
                lambda s: problems(s).resolve(problem.id, ResolutionAction.ESCALATION, STAFF)
            )

    @pytest.mark.asyncio
    async def test_rejected_problem_is_final(self, factory, problems) -> None:  # noqa: ANN001
        contract = await _active_contract(factory)
        problem = await _report(factory, problems, contract.worker_id)
        await factory.runner.run(lambda s: problems(s).reject(problem.id, STAFF, "no evidence"))

        with pytest.raises(InvalidStateTransitionError):
            await factory.runner.run(lambda s: problems(s).approve(problem.id, STAFF))

        listed = await factory.runner.run(lambda s: problems(s).list_for_worker(contract.worker_id))
        assert [(p.id, p.status) for p in listed] == [(problem.id, ProblemStatus.REJECTED)]

"""Races between concurrent transactions on the same rows.

Each contender runs in its own session and connection against a shared
SQLite file, so the version check and the partial unique indexes are what
decide the winner.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import CUSTOMER, STAFF
from staffing_broker.domain.enums import (
    PaymentMethod,
    PaymentSessionStatus,
    PaymentStatus,
    ReservationState,
    WorkerStatus,
)
from staffing_broker.domain.exceptions import (
    AlreadyInProgressError,
    NotProcessableError,
    TransactionContentionError,
    WorkerUnavailableError,
)
from staffing_broker.infrastructure.database.orm_models import Payment, PaymentSession, Worker
from staffing_broker.services.payment_service import PaymentService
from staffing_broker.services.payment_session_service import PaymentSessionService
from staffing_broker.services.proposal_service import ProposalService
from staffing_broker.services.reservation_service import ReservationService


class TestConcurrentClaims:
    @pytest.mark.asyncio
    async def test_exactly_one_reservation_wins(self, factory, runner, clock, settings) -> None:  # noqa: ANN001
        worker = await factory.worker()
        today = clock.now().date()

        async def reserve(customer_id: str):  # noqa: ANN202
            return await runner.run(
                lambda s: ReservationService(s, clock, settings).reserve(
                    worker.id, customer_id, today + timedelta(days=1), today + timedelta(days=90)
                ),
                name="reservation.reserve",
            )

        results = await asyncio.gather(
            *(reserve(f"cust-{n}") for n in range(5)), return_exceptions=True
        )

        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert len(losers) == 4
        assert all(isinstance(exc, WorkerUnavailableError) for exc in losers)
        assert winners[0].state == ReservationState.AWAITING_CONTRACT

        stored = await factory.reload(Worker, worker.id)
        assert stored.status == WorkerStatus.RESERVED_AWAITING_CONTRACT
        active = await runner.run(
            lambda s: ReservationService(s, clock, settings).list_for_customer(winners[0].customer_id)
        )
        assert len(active) == 1


class TestConcurrentAwards:
    @pytest.mark.asyncio
    async def test_request_is_never_over_awarded(self, runner, clock) -> None:  # noqa: ANN001
        request = await runner.run(
            lambda s: ProposalService(s, clock).open_request(5, clock.now() + timedelta(days=7), actor=STAFF)
        )
        proposals = [
            await runner.run(
                lambda s, agency=agency: ProposalService(s, clock).submit_proposal(
                    request.id, agency, 5, Decimal("900.00")
                )
            )
            for agency in ("agency-a", "agency-b", "agency-c")
        ]

        results = await asyncio.gather(
            *(
                runner.run(lambda s, pid=p.id: ProposalService(s, clock).approve(pid, STAFF))
                for p in proposals
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, BaseException)]
        assert len(winners) == 1
        assert all(
            isinstance(r, (NotProcessableError, TransactionContentionError))
            for r in results
            if isinstance(r, BaseException)
        )
        stored = await runner.run(lambda s: ProposalService(s, clock).get_request(request.id))
        assert stored.awarded_qty == 5


class TestConcurrentPayments:
    PHONE = "+966500000000"

    @staticmethod
    async def _count(runner, model, contract_id) -> int:  # noqa: ANN001
        return await runner.run(
            lambda s: s.scalar(
                select(func.count()).select_from(model).where(model.contract_id == contract_id)
            )
        )

    @pytest.mark.asyncio
    async def test_one_session_per_contract(self, factory, runner, clock, settings) -> None:  # noqa: ANN001
        contract = await factory.contract(CUSTOMER)

        results = await asyncio.gather(
            *(
                runner.run(
                    lambda s: PaymentSessionService(s, clock, settings).create_session(
                        contract.id, self.PHONE, customer_id=CUSTOMER
                    ),
                    name="payment_session.create",
                )
                for _ in range(4)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert winners[0].status == PaymentSessionStatus.PENDING
        assert len(losers) == 3
        assert all(isinstance(exc, AlreadyInProgressError) for exc in losers)
        assert await self._count(runner, PaymentSession, contract.id) == 1

    @pytest.mark.asyncio
    async def test_one_open_payment_per_contract(self, factory, runner, clock, settings) -> None:  # noqa: ANN001
        contract = await factory.contract(CUSTOMER)

        results = await asyncio.gather(
            *(
                runner.run(
                    lambda s: PaymentService(s, clock, settings).prepare_payment(
                        contract.id, PaymentMethod.BANK_TRANSFER, customer_id=CUSTOMER
                    ),
                    name="payment.prepare",
                )
                for _ in range(4)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert winners[0].status == PaymentStatus.PENDING
        assert len(losers) == 3
        assert all(isinstance(exc, AlreadyInProgressError) for exc in losers)
        assert await self._count(runner, Payment, contract.id) == 1

    @pytest.mark.asyncio
    async def test_correct_code_pays_once(  # noqa: ANN001
        self, factory, runner, clock, settings, otp_sender
    ) -> None:
        contract = await factory.contract(CUSTOMER)
        payment_session = await runner.run(
            lambda s: PaymentSessionService(s, clock, settings).create_session(
                contract.id, self.PHONE, customer_id=CUSTOMER
            )
        )
        code = otp_sender.last_code

        results = await asyncio.gather(
            *(
                runner.run(
                    lambda s: PaymentSessionService(s, clock, settings).verify_otp(
                        payment_session.id, code, customer_id=CUSTOMER
                    ),
                    name="payment_session.verify",
                )
                for _ in range(3)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, BaseException)]
        assert len(winners) == 1
        assert winners[0].status == PaymentSessionStatus.COMPLETED
        assert len(losers) == 2
        assert all(isinstance(exc, NotProcessableError) for exc in losers)

        payments = await runner.run(
            lambda s: PaymentService(s, clock, settings).list_for_contract(contract.id)
        )
        assert [p.status for p in payments] == [PaymentStatus.COMPLETED]

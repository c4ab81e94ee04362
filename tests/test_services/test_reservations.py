"""Tests for the reservation lifecycle: claim, approve, reject, extend, cancel, expire."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import CUSTOMER, OTHER_CUSTOMER, STAFF
from staffing_broker.domain.collaborators import EntityRef
from staffing_broker.domain.enums import (
    EntityKind,
    EventType,
    ReservationAction,
    ReservationState,
    WorkerStatus,
)
from staffing_broker.domain.exceptions import (
    DomainValidationError,
    ExpiredError,
    InvalidWindowError,
    NotProcessableError,
    UnauthorizedError,
    WorkerUnavailableError,
)
from staffing_broker.infrastructure.database.orm_models import Worker, WorkerReservation
from staffing_broker.services.reservation_service import ReservationService


def _service(session, clock, settings) -> ReservationService:  # noqa: ANN001
    return ReservationService(session, clock, settings)


class TestReserve:
    @pytest.mark.asyncio
    async def test_reserve_holds_worker(self, factory, clock, notifier) -> None:  # noqa: ANN001
        reservation = await factory.reservation()

        assert reservation.state == ReservationState.AWAITING_CONTRACT
        assert reservation.customer_id == CUSTOMER
        assert reservation.expires_at == clock.now() + timedelta(minutes=10)

        worker = await factory.reload(Worker, reservation.worker_id)
        assert worker.status == WorkerStatus.RESERVED_AWAITING_CONTRACT
        assert notifier.event_types() == ["reservation.created"]

    @pytest.mark.asyncio
    async def test_second_claim_on_same_worker_fails(self, factory) -> None:  # noqa: ANN001
        first = await factory.reservation()

        with pytest.raises(WorkerUnavailableError):
            await factory.reservation(worker_id=first.worker_id, customer_id=OTHER_CUSTOMER)

    @pytest.mark.asyncio
    async def test_window_must_be_forward(self, factory, runner, clock, settings) -> None:  # noqa: ANN001
        worker = await factory.worker()
        day = clock.now().date() + timedelta(days=3)

        with pytest.raises(InvalidWindowError):
            await runner.run(lambda s: _service(s, clock, settings).reserve(worker.id, CUSTOMER, day, day))

        worker = await factory.reload(Worker, worker.id)
        assert worker.status == WorkerStatus.READY

    @pytest.mark.asyncio
    async def test_window_cannot_start_in_past(self, factory, runner, clock, settings) -> None:  # noqa: ANN001
        worker = await factory.worker()
        yesterday = clock.now().date() - timedelta(days=1)

        with pytest.raises(InvalidWindowError, match="past"):
            await runner.run(
                lambda s: _service(s, clock, settings).reserve(
                    worker.id, CUSTOMER, yesterday, yesterday + timedelta(days=30)
                )
            )


class TestProcess:
    @pytest.mark.asyncio
    async def test_approve_confirms_hold(self, factory, clock) -> None:  # noqa: ANN001
        reservation = await factory.reservation()
        clock.advance(minutes=5)

        approved = await factory.runner.run(
            lambda s: _service(s, clock, factory.settings).process(
                reservation.id, ReservationAction.APPROVE, STAFF, notes="documents checked"
            )
        )

        assert approved.state == ReservationState.AWAITING_PAYMENT
        assert approved.processed_by == STAFF.id
        # Fresh window from the moment of approval
        assert approved.expires_at == clock.now() + timedelta(minutes=10)
        worker = await factory.reload(Worker, reservation.worker_id)
        assert worker.status == WorkerStatus.RESERVED_AWAITING_PAYMENT

    @pytest.mark.asyncio
    async def test_reject_releases_worker(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()

        rejected = await factory.runner.run(
            lambda s: _service(s, clock, settings).process(
                reservation.id, ReservationAction.REJECT, STAFF, notes="no visa"
            )
        )

        assert rejected.state == ReservationState.CANCELLED
        assert rejected.cancellation_reason == "no visa"
        worker = await factory.reload(Worker, reservation.worker_id)
        assert worker.status == WorkerStatus.READY

        events = await factory.events(EntityRef(EntityKind.RESERVATION, reservation.id))
        assert events[-1].event_type == EventType.RESERVATION_REJECTED

    @pytest.mark.asyncio
    async def test_extend_pushes_deadline(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()

        extended = await factory.runner.run(
            lambda s: _service(s, clock, settings).process(
                reservation.id, ReservationAction.EXTEND, STAFF, extension_minutes=30
            )
        )

        assert extended.state == ReservationState.AWAITING_CONTRACT
        assert extended.expires_at == reservation.expires_at + timedelta(minutes=30)

    @pytest.mark.parametrize("minutes", [None, 5, 500])
    @pytest.mark.asyncio
    async def test_extend_out_of_policy(self, factory, clock, settings, minutes) -> None:  # noqa: ANN001
        reservation = await factory.reservation()

        with pytest.raises(DomainValidationError, match="Extension"):
            await factory.runner.run(
                lambda s: _service(s, clock, settings).process(
                    reservation.id, ReservationAction.EXTEND, STAFF, extension_minutes=minutes
                )
            )

    @pytest.mark.asyncio
    async def test_lapsed_reservation_is_expired_not_approved(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()
        clock.advance(minutes=10)

        with pytest.raises(ExpiredError):
            await factory.runner.run(
                lambda s: _service(s, clock, settings).process(
                    reservation.id, ReservationAction.APPROVE, STAFF
                )
            )

        # The expiry itself is committed
        stored = await factory.reload(WorkerReservation, reservation.id)
        assert stored.state == ReservationState.EXPIRED
        worker = await factory.reload(Worker, reservation.worker_id)
        assert worker.status == WorkerStatus.READY

    @pytest.mark.asyncio
    async def test_cannot_process_closed_reservation(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()
        await factory.runner.run(
            lambda s: _service(s, clock, settings).cancel(reservation.id, CUSTOMER, "changed mind")
        )

        with pytest.raises(NotProcessableError):
            await factory.runner.run(
                lambda s: _service(s, clock, settings).process(
                    reservation.id, ReservationAction.APPROVE, STAFF
                )
            )


class TestCancel:
    @pytest.mark.asyncio
    async def test_customer_cancel_releases_worker(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.confirmed_reservation()

        cancelled = await factory.runner.run(
            lambda s: _service(s, clock, settings).cancel(reservation.id, CUSTOMER, "  found another  ")
        )

        assert cancelled.state == ReservationState.CANCELLED
        assert cancelled.cancellation_reason == "found another"
        assert cancelled.cancelled_at == clock.now()
        worker = await factory.reload(Worker, reservation.worker_id)
        assert worker.status == WorkerStatus.READY

    @pytest.mark.asyncio
    async def test_other_customer_cannot_cancel(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()

        with pytest.raises(UnauthorizedError):
            await factory.runner.run(
                lambda s: _service(s, clock, settings).cancel(reservation.id, OTHER_CUSTOMER, "mine now")
            )

    @pytest.mark.asyncio
    async def test_reason_required(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()

        with pytest.raises(DomainValidationError):
            await factory.runner.run(
                lambda s: _service(s, clock, settings).cancel(reservation.id, CUSTOMER, "   ")
            )


class TestReads:
    @pytest.mark.asyncio
    async def test_get_expires_lazily(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()
        clock.advance(minutes=11)

        fetched = await factory.runner.run(lambda s: _service(s, clock, settings).get(reservation.id))

        assert fetched.state == ReservationState.EXPIRED
        worker = await factory.reload(Worker, reservation.worker_id)
        assert worker.status == WorkerStatus.READY

    @pytest.mark.asyncio
    async def test_expire_if_lapsed_skips_live_reservation(self, factory, clock, settings) -> None:  # noqa: ANN001
        reservation = await factory.reservation()

        expired = await factory.runner.run(
            lambda s: _service(s, clock, settings).expire_if_lapsed(reservation.id)
        )
        assert expired is False

    @pytest.mark.asyncio
    async def test_list_for_customer_filters_state(self, factory, clock, settings) -> None:  # noqa: ANN001
        pending = await factory.reservation()
        confirmed = await factory.confirmed_reservation()
        await factory.reservation(customer_id=OTHER_CUSTOMER)

        everything = await factory.runner.run(
            lambda s: _service(s, clock, settings).list_for_customer(CUSTOMER)
        )
        only_confirmed = await factory.runner.run(
            lambda s: _service(s, clock, settings).list_for_customer(
                CUSTOMER, ReservationState.AWAITING_PAYMENT
            )
        )

        assert {r.id for r in everything} == {pending.id, confirmed.id}
        assert [r.id for r in only_confirmed] == [confirmed.id]

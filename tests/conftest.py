"""Shared test fixtures for the Staffing Broker test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite), schema via create_all
    - A FrozenClock the tests advance explicitly
    - Recording collaborators for notifications and OTP deliveries
    - A TransactionRunner and a Factory for building domain fixtures
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

from staffing_broker.config import Settings
from staffing_broker.domain.collaborators import Actor, EntityRef
from staffing_broker.domain.enums import ReservationAction
from staffing_broker.infrastructure.database.engine import build_engine, build_session_factory
from staffing_broker.infrastructure.database.orm_models import Base
from staffing_broker.infrastructure.database.repositories import EventRepository
from staffing_broker.infrastructure.database.transactions import TransactionRunner
from staffing_broker.services.contract_service import ContractService
from staffing_broker.services.reservation_service import ReservationService
from staffing_broker.services.worker_ledger import WorkerLedger

CUSTOMER = "cust-1"
OTHER_CUSTOMER = "cust-2"
STAFF = Actor(id="ops-1", roles=frozenset({"operations"}))
START = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        self._now += timedelta(**delta)
        return self._now


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent = []

    async def notify(self, notification) -> None:  # noqa: ANN001
        self.sent.append(notification)

    def event_types(self) -> list[str]:
        return [n.event_type for n in self.sent]


class RecordingOtpSender:
    def __init__(self) -> None:
        self.deliveries = []

    async def send_otp(self, delivery) -> None:  # noqa: ANN001
        self.deliveries.append(delivery)

    @property
    def last_code(self) -> str:
        return self.deliveries[-1].code


# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:  # noqa: ANN001
    return Settings(
        _env_file=None,
        app_env="development",
        app_log_level="WARNING",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'broker.db'}",
        otp_hash_rounds=4,
        payment_bypass_enabled=False,
        sweeper_enabled=False,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def otp_sender() -> RecordingOtpSender:
    return RecordingOtpSender()


@pytest_asyncio.fixture
async def engine(settings: Settings):  # noqa: ANN201
    engine = build_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def runner(engine, notifier, otp_sender) -> TransactionRunner:  # noqa: ANN001
    return TransactionRunner(
        build_session_factory(engine),
        max_attempts=5,
        backoff_seconds=0.01,
        notifier=notifier,
        otp_sender=otp_sender,
    )


# ---------------------------------------------------------------------------
# Domain Fixtures
# ---------------------------------------------------------------------------


class Factory:
    """Builds workers, reservations and contracts through the real services."""

    def __init__(self, runner: TransactionRunner, clock: FrozenClock, settings: Settings) -> None:
        self.runner = runner
        self.clock = clock
        self.settings = settings

    async def worker(self, **profile: object):  # noqa: ANN201
        number = f"W-{uuid.uuid4().hex[:8].upper()}"
        return await self.runner.run(
            lambda s: WorkerLedger(s, self.clock).register_worker(number, "Test Worker", **profile)
        )

    async def reservation(self, worker_id: uuid.UUID | None = None, customer_id: str = CUSTOMER):  # noqa: ANN201
        if worker_id is None:
            worker_id = (await self.worker()).id
        today = self.clock.now().date()
        return await self.runner.run(
            lambda s: ReservationService(s, self.clock, self.settings).reserve(
                worker_id, customer_id, today + timedelta(days=1), today + timedelta(days=366)
            )
        )

    async def confirmed_reservation(self, customer_id: str = CUSTOMER):  # noqa: ANN201
        reservation = await self.reservation(customer_id=customer_id)
        return await self.runner.run(
            lambda s: ReservationService(s, self.clock, self.settings).process(
                reservation.id, ReservationAction.APPROVE, STAFF
            )
        )

    async def contract(
        self,
        customer_id: str = CUSTOMER,
        amount: Decimal = Decimal("1000.00"),
        payment_on_signing: bool = True,
    ):  # noqa: ANN201
        reservation = await self.confirmed_reservation(customer_id)
        return await self.runner.run(
            lambda s: ContractService(s, self.clock, self.settings).create_from_reservation(
                reservation.id,
                customer_id,
                original_amount=amount,
                terms_accepted=True,
                payment_on_signing=payment_on_signing,
            )
        )

    async def reload(self, model: type, entity_id: uuid.UUID):  # noqa: ANN201
        return await self.runner.run(lambda s: s.get(model, entity_id))

    async def events(self, subject: EntityRef) -> list:
        return await self.runner.run(lambda s: EventRepository(s).get_for_entity(subject))


@pytest.fixture
def factory(runner: TransactionRunner, clock: FrozenClock, settings: Settings) -> Factory:
    return Factory(runner, clock, settings)

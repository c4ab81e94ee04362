"""Expiry Sweeper - eager enforcement of every deadline in the system.

Lazy checks on access already refuse to act on lapsed entities, but an
abandoned flow would otherwise hold its worker forever. One tick:

    1. expires active reservations past expires_at (worker released);
    2. cancels pending payment sessions past expires_at (reason Expired);
    3. cancels AwaitingPayment contracts past their payment deadline;
    4. marks Unpaid invoices past their due date Overdue.

Each item runs in its own short transaction and is re-checked under its row
lock, so a concurrent extend or payment wins over the sweep. A failing item
is logged and counted, and the tick carries on.

Ticks come from an external scheduler (POST /api/v1/admin/sweeps) or from
``run_periodic``, started by the app lifespan when the sweeper is enabled.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

from staffing_broker.config import Settings, get_settings
from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.infrastructure.database.repositories import (
    ContractRepository,
    InvoiceRepository,
    PaymentSessionRepository,
    ReservationRepository,
)
from staffing_broker.infrastructure.redis_client import get_redis_or_none, sweeper_lock
from staffing_broker.logging_config import get_logger
from staffing_broker.services.contract_service import ContractService
from staffing_broker.services.payment_session_service import PaymentSessionService
from staffing_broker.services.reservation_service import ReservationService

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from staffing_broker.infrastructure.database.transactions import TransactionRunner

logger = get_logger(__name__)


@dataclass
class SweepReport:
    reservations_expired: int = 0
    sessions_expired: int = 0
    contracts_cancelled: int = 0
    invoices_overdue: int = 0
    failures: int = 0

    @property
    def total(self) -> int:
        return (
            self.reservations_expired
            + self.sessions_expired
            + self.contracts_cancelled
            + self.invoices_overdue
        )

    def as_dict(self) -> dict[str, int]:
        return {**asdict(self), "total": self.total}


class ExpirySweeper:
    def __init__(
        self,
        runner: TransactionRunner,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._runner = runner
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()

    async def sweep(self) -> SweepReport:
        """Run one tick over every deadline category."""
        report = SweepReport()
        now = self._clock.now()
        batch = self._settings.sweeper_batch_size

        report.reservations_expired, failed = await self._sweep_category(
            "reservation",
            lambda s: ReservationRepository(s).list_lapsed_ids(now, batch),
            lambda s, item_id: ReservationService(s, self._clock, self._settings).expire_if_lapsed(item_id),
        )
        report.failures += failed

        report.sessions_expired, failed = await self._sweep_category(
            "payment_session",
            lambda s: PaymentSessionRepository(s).list_lapsed_ids(now, batch),
            lambda s, item_id: PaymentSessionService(s, self._clock, self._settings).expire_if_lapsed(item_id),
        )
        report.failures += failed

        report.contracts_cancelled, failed = await self._sweep_category(
            "contract",
            lambda s: ContractRepository(s).list_unpaid_past_deadline_ids(now, batch),
            lambda s, item_id: ContractService(s, self._clock, self._settings).expire_unpaid(item_id),
        )
        report.failures += failed

        report.invoices_overdue, failed = await self._sweep_category(
            "invoice",
            lambda s: InvoiceRepository(s).list_overdue_ids(now, batch),
            lambda s, item_id: ContractService(s, self._clock, self._settings).mark_invoice_overdue(item_id),
        )
        report.failures += failed

        logger.info("sweeper.tick_completed", at=now.isoformat(), **report.as_dict())
        return report

    async def _sweep_category(
        self,
        category: str,
        list_ids: Callable[[AsyncSession], Awaitable[list[uuid.UUID]]],
        expire: Callable[[AsyncSession, uuid.UUID], Awaitable[bool]],
    ) -> tuple[int, int]:
        ids = await self._runner.run(list_ids, name=f"sweeper.scan_{category}")
        changed = failed = 0
        for item_id in ids:
            try:
                if await self._runner.run(
                    lambda s, item_id=item_id: expire(s, item_id),
                    name=f"sweeper.expire_{category}",
                ):
                    changed += 1
            except Exception:
                failed += 1
                logger.exception("sweeper.item_failed", category=category, item_id=str(item_id))
        return changed, failed

    async def run_periodic(self, stop: asyncio.Event) -> None:
        """Tick every sweeper_interval_seconds until ``stop`` is set."""
        interval = self._settings.sweeper_interval_seconds
        logger.info("sweeper.started", interval_seconds=interval)
        while not stop.is_set():
            try:
                async with sweeper_lock(get_redis_or_none()) as acquired:
                    if acquired:
                        await self.sweep()
                    else:
                        logger.debug("sweeper.tick_skipped", reason="lock held elsewhere")
            except Exception:
                logger.exception("sweeper.tick_failed")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except TimeoutError:
                pass
        logger.info("sweeper.stopped")

"""Transaction runner: one database transaction per service operation.

Every multi-entity transition (worker + reservation, contract + invoice +
payment, ...) runs inside ``TransactionRunner.run``. The runner:

    - opens a fresh AsyncSession per attempt and commits on success;
    - rolls back on failure, except for domain errors flagged with
      ``commits_side_effects`` (expiry, OTP attempt counting), which are
      committed before being re-raised;
    - retries when the database reports a lost race (version_id_col
      mismatch, serialization failure, deadlock, SQLite lock timeout) and
      raises TransactionContentionError once the budget is spent;
    - delivers queued notifications and OTPs only after a commit.

Usage:
    runner = TransactionRunner(get_session_factory())
    reservation = await runner.run(
        lambda session: ReservationService(session).reserve(...)
    )
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from staffing_broker.domain.exceptions import StaffingError, TransactionContentionError
from staffing_broker.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from staffing_broker.domain.collaborators import (
        Notification,
        Notifier,
        OtpDelivery,
        OtpSender,
    )

logger = get_logger(__name__)

T = TypeVar("T")

_RETRYABLE_SQLSTATES = {"40001", "40P01"}


@dataclass
class Outbox:
    """Collaborator calls queued during a transaction, delivered after commit."""

    notifications: list[Notification] = field(default_factory=list)
    otp_deliveries: list[OtpDelivery] = field(default_factory=list)

    def clear(self) -> None:
        self.notifications.clear()
        self.otp_deliveries.clear()


def outbox_for(session: AsyncSession) -> Outbox:
    """Return the outbox attached to a session, creating it on first use."""
    outbox = session.info.get("outbox")
    if outbox is None:
        outbox = Outbox()
        session.info["outbox"] = outbox
    return outbox


def is_contention_error(exc: BaseException) -> bool:
    """Whether an exception means a concurrent writer won the race."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in _RETRYABLE_SQLSTATES:
            return True
        if isinstance(exc, OperationalError) and "database is locked" in str(orig):
            return True
    return False


class TransactionRunner:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.05,
        notifier: Notifier | None = None,
        otp_sender: OtpSender | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._notifier = notifier
        self._otp_sender = otp_sender

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    async def run(
        self,
        operation: Callable[[AsyncSession], Awaitable[T]],
        *,
        name: str = "transaction",
    ) -> T:
        """Run ``operation`` in its own transaction, retrying on contention."""
        for attempt in range(1, self._max_attempts + 1):
            async with self._session_factory() as session:
                outbox = outbox_for(session)
                try:
                    try:
                        result = await operation(session)
                    except StaffingError as exc:
                        if not exc.commits_side_effects:
                            raise
                        await session.commit()
                        await self._dispatch(outbox)
                        raise
                    await session.commit()
                except StaffingError:
                    await session.rollback()
                    raise
                except Exception as exc:
                    await session.rollback()
                    if not is_contention_error(exc):
                        raise
                    if attempt >= self._max_attempts:
                        logger.error(
                            "transaction.contention_exhausted",
                            operation=name,
                            attempts=attempt,
                        )
                        raise TransactionContentionError(attempt) from exc
                    logger.warning(
                        "transaction.contention_retry",
                        operation=name,
                        attempt=attempt,
                        error=type(exc).__name__,
                    )
                    outbox.clear()
                    await asyncio.sleep(self._backoff_seconds * attempt)
                    continue

            await self._dispatch(outbox)
            return result

        # Unreachable: the loop either returns or raises
        raise TransactionContentionError(self._max_attempts)

    async def _dispatch(self, outbox: Outbox) -> None:
        """Deliver queued collaborator calls. Failures never undo the commit."""
        for notification in outbox.notifications:
            if self._notifier is None:
                break
            try:
                await self._notifier.notify(notification)
            except Exception:
                logger.exception(
                    "notification.dispatch_failed",
                    event_type=notification.event_type,
                    subject=str(notification.subject),
                )
        for delivery in outbox.otp_deliveries:
            if self._otp_sender is None:
                break
            try:
                await self._otp_sender.send_otp(delivery)
            except Exception:
                logger.exception("otp.dispatch_failed", subject=str(delivery.subject))
        outbox.clear()

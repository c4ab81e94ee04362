"""Reservation Manager - time-boxed exclusive claims on workers.

A reservation moves AwaitingContract -> AwaitingPayment ("confirmed") ->
Completed when a contract is created from it, or ends Cancelled/Expired and
gives its worker back to the pool. Deadlines are re-checked under the
reservation row lock in the same transaction as the state write, so a
reservation that lapses mid-request is never acted on.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from staffing_broker.config import Settings, get_settings
from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import Actor, EntityRef, Notification
from staffing_broker.domain.enums import (
    ACTIVE_RESERVATION_STATES,
    EntityKind,
    EventType,
    ReservationAction,
    ReservationState,
)
from staffing_broker.domain.exceptions import (
    DomainValidationError,
    EntityNotFoundError,
    ExpiredError,
    InvalidWindowError,
    NotProcessableError,
    UnauthorizedError,
)
from staffing_broker.domain.state_machine import ReservationStateMachine, fire_transition
from staffing_broker.infrastructure.database.repositories import (
    EventRepository,
    ReservationRepository,
)
from staffing_broker.infrastructure.database.transactions import outbox_for
from staffing_broker.logging_config import get_logger
from staffing_broker.services.worker_ledger import WorkerLedger

if TYPE_CHECKING:
    import uuid
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession

    from staffing_broker.infrastructure.database.orm_models import WorkerReservation

logger = get_logger(__name__)


class ReservationService:
    """Manages the reservation lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._reservation_repo = ReservationRepository(session)
        self._event_repo = EventRepository(session)
        self._ledger = WorkerLedger(session, self._clock)

    # ------------------------------------------------------------------
    # Reserve
    # ------------------------------------------------------------------

    async def reserve(
        self,
        worker_id: uuid.UUID,
        customer_id: str,
        start_date: date,
        end_date: date,
    ) -> WorkerReservation:
        """Claim a Ready worker for a customer.

        Raises:
            InvalidWindowError: end_date <= start_date, or start_date in the past.
            WorkerUnavailableError: The worker is not Ready.
        """
        now = self._clock.now()
        if end_date <= start_date:
            raise InvalidWindowError(
                "Reservation end date must be after its start date",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )
        if start_date < now.date():
            raise InvalidWindowError(
                "Reservation cannot start in the past",
                details={"start_date": str(start_date), "today": str(now.date())},
            )

        expires_at = now + timedelta(minutes=self._settings.reservation_ttl_minutes)
        reservation = await self._ledger.try_claim(
            worker_id, customer_id, start_date, end_date, expires_at
        )

        await self._event_repo.record(
            subject=EntityRef(EntityKind.RESERVATION, reservation.id),
            event_type=EventType.RESERVATION_CREATED,
            old_status=None,
            new_status=reservation.state,
            actor=customer_id,
            metadata={"worker_id": worker_id, "expires_at": expires_at},
        )
        self._notify(reservation, "reservation.created")

        logger.info(
            "reservation.created",
            reservation_id=str(reservation.id),
            worker_id=str(worker_id),
            customer_id=customer_id,
            expires_at=expires_at.isoformat(),
        )
        return reservation

    # ------------------------------------------------------------------
    # Back-office processing
    # ------------------------------------------------------------------

    async def process(
        self,
        reservation_id: uuid.UUID,
        action: ReservationAction,
        actor: Actor,
        notes: str | None = None,
        extension_minutes: int | None = None,
    ) -> WorkerReservation:
        """Approve, reject or extend an active reservation.

        Raises:
            NotProcessableError: The reservation is not active.
            ExpiredError: The reservation lapsed; it is marked Expired and
                its worker released before the error is reported.
            DomainValidationError: extension_minutes is missing or out of policy.
        """
        reservation = await self._get_for_update_or_raise(reservation_id)
        if reservation.state not in ACTIVE_RESERVATION_STATES:
            raise NotProcessableError(
                "Only active reservations can be processed",
                details={"reservation_id": str(reservation_id), "state": reservation.state},
            )
        await self._raise_if_lapsed(reservation)

        action = ReservationAction(action)
        if action is ReservationAction.APPROVE:
            return await self._approve(reservation, actor, notes)
        if action is ReservationAction.REJECT:
            return await self._close(
                reservation,
                EventType.RESERVATION_REJECTED,
                actor,
                reason=notes or "Rejected by back office",
            )
        return await self._extend(reservation, actor, extension_minutes, notes)

    async def _approve(
        self, reservation: WorkerReservation, actor: Actor, notes: str | None
    ) -> WorkerReservation:
        old_state = reservation.state
        reservation.state = fire_transition(
            ReservationStateMachine,
            reservation.state,
            "approve",
            target=ReservationState.AWAITING_PAYMENT,
        )
        # The customer now has a fresh window to sign the contract
        reservation.expires_at = self._clock.now() + timedelta(
            minutes=self._settings.reservation_payment_ttl_minutes
        )
        reservation.processed_by = actor.id
        if notes:
            reservation.notes = notes
        await self._reservation_repo.save(reservation)

        await self._ledger.confirm_hold(reservation.worker_id, actor)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.RESERVATION, reservation.id),
            event_type=EventType.RESERVATION_APPROVED,
            old_status=old_state,
            new_status=reservation.state,
            actor=actor.id,
            metadata={"expires_at": reservation.expires_at},
        )
        self._notify(reservation, "reservation.approved")
        logger.info("reservation.approved", reservation_id=str(reservation.id))
        return reservation

    async def _extend(
        self,
        reservation: WorkerReservation,
        actor: Actor,
        extension_minutes: int | None,
        notes: str | None,
    ) -> WorkerReservation:
        low = self._settings.reservation_extension_min_minutes
        high = self._settings.reservation_extension_max_minutes
        if extension_minutes is None or not low <= extension_minutes <= high:
            raise DomainValidationError(
                f"Extension must be between {low} and {high} minutes",
                details={"extension_minutes": extension_minutes},
            )

        previous = reservation.expires_at
        reservation.expires_at = previous + timedelta(minutes=extension_minutes)
        reservation.processed_by = actor.id
        if notes:
            reservation.notes = notes
        await self._reservation_repo.save(reservation)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.RESERVATION, reservation.id),
            event_type=EventType.RESERVATION_EXTENDED,
            old_status=reservation.state,
            new_status=reservation.state,
            actor=actor.id,
            metadata={
                "extension_minutes": extension_minutes,
                "previous_expires_at": previous,
                "expires_at": reservation.expires_at,
            },
        )
        logger.info(
            "reservation.extended",
            reservation_id=str(reservation.id),
            minutes=extension_minutes,
        )
        return reservation

    # ------------------------------------------------------------------
    # Customer cancellation
    # ------------------------------------------------------------------

    async def cancel(
        self,
        reservation_id: uuid.UUID,
        customer_id: str,
        reason: str,
    ) -> WorkerReservation:
        """Customer-initiated cancellation. Always releases the worker."""
        if not reason or not reason.strip():
            raise DomainValidationError("A cancellation reason is required")

        reservation = await self._get_for_update_or_raise(reservation_id)
        if reservation.customer_id != customer_id:
            raise UnauthorizedError("Reservation does not belong to this customer")
        if reservation.state not in ACTIVE_RESERVATION_STATES:
            raise NotProcessableError(
                "Only active reservations can be cancelled",
                details={"reservation_id": str(reservation_id), "state": reservation.state},
            )

        return await self._close(
            reservation,
            EventType.RESERVATION_CANCELLED,
            Actor(id=customer_id, roles=frozenset({"customer"})),
            reason=reason.strip(),
        )

    # ------------------------------------------------------------------
    # Reads and expiry
    # ------------------------------------------------------------------

    async def get(
        self, reservation_id: uuid.UUID, customer_id: str | None = None
    ) -> WorkerReservation:
        """Fetch a reservation, expiring it first if its deadline has passed.

        Ownership is checked before the lazy expiry, so a foreign caller
        never changes the row.
        """
        reservation = await self._get_for_update_or_raise(reservation_id)
        if customer_id is not None and reservation.customer_id != customer_id:
            raise UnauthorizedError("Reservation does not belong to this customer")
        if self._is_lapsed(reservation):
            await self._expire(reservation)
        return reservation

    async def list_for_customer(
        self, customer_id: str, state: ReservationState | None = None
    ) -> list[WorkerReservation]:
        return await self._reservation_repo.list_for_customer(customer_id, state)

    async def expire_if_lapsed(self, reservation_id: uuid.UUID) -> bool:
        """Expire one reservation if, under lock, it is still active and lapsed."""
        reservation = await self._reservation_repo.get_for_update(reservation_id)
        if reservation is None or not self._is_lapsed(reservation):
            return False
        await self._expire(reservation)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_lapsed(self, reservation: WorkerReservation) -> bool:
        return (
            reservation.state in ACTIVE_RESERVATION_STATES
            and self._clock.now() >= reservation.expires_at
        )

    async def _raise_if_lapsed(self, reservation: WorkerReservation) -> None:
        if self._is_lapsed(reservation):
            await self._expire(reservation)
            raise ExpiredError(
                "Reservation has expired",
                details={
                    "reservation_id": str(reservation.id),
                    "expired_at": reservation.expires_at.isoformat(),
                },
            )

    async def _expire(self, reservation: WorkerReservation) -> None:
        old_state = reservation.state
        reservation.state = fire_transition(
            ReservationStateMachine, reservation.state, "expire", target=ReservationState.EXPIRED
        )
        await self._reservation_repo.save(reservation)
        await self._ledger.release(reservation.worker_id, reason="reservation expired")

        await self._event_repo.record(
            subject=EntityRef(EntityKind.RESERVATION, reservation.id),
            event_type=EventType.RESERVATION_EXPIRED,
            old_status=old_state,
            new_status=reservation.state,
            metadata={"expires_at": reservation.expires_at},
        )
        self._notify(reservation, "reservation.expired")
        logger.info("reservation.expired", reservation_id=str(reservation.id))

    async def _close(
        self,
        reservation: WorkerReservation,
        event_type: EventType,
        actor: Actor,
        reason: str,
    ) -> WorkerReservation:
        old_state = reservation.state
        reservation.state = fire_transition(
            ReservationStateMachine, reservation.state, "cancel", target=ReservationState.CANCELLED
        )
        reservation.cancellation_reason = reason
        reservation.cancelled_at = self._clock.now()
        reservation.processed_by = actor.id
        await self._reservation_repo.save(reservation)

        await self._ledger.release(reservation.worker_id, actor, reason=reason)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.RESERVATION, reservation.id),
            event_type=event_type,
            old_status=old_state,
            new_status=reservation.state,
            actor=actor.id,
            metadata={"reason": reason},
        )
        self._notify(reservation, "reservation.cancelled", reason=reason)
        logger.info(
            "reservation.cancelled",
            reservation_id=str(reservation.id),
            event_type=event_type.value,
        )
        return reservation

    def _notify(self, reservation: WorkerReservation, event_type: str, **payload: object) -> None:
        outbox_for(self._session).notifications.append(
            Notification(
                user_id=reservation.customer_id,
                event_type=event_type,
                subject=EntityRef(EntityKind.RESERVATION, reservation.id),
                payload={"state": str(reservation.state), **payload},
            )
        )

    async def _get_for_update_or_raise(self, reservation_id: uuid.UUID) -> WorkerReservation:
        reservation = await self._reservation_repo.get_for_update(reservation_id)
        if reservation is None:
            raise EntityNotFoundError(EntityKind.RESERVATION, reservation_id)
        return reservation

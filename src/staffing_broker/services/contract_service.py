"""Contract/Invoice Workflow.

Turns a confirmed reservation into a contract and its invoice, then drives
the contract through its status table. Every status change applies its
worker and payment side effects in the same transaction as the contract
write.

Operator status table (transition_status):
    Draft      -> Active, Cancelled
    Active     -> Suspended, Terminated, Completed
    Suspended  -> Active, Terminated

Payment flow (system-driven):
    Draft -> AwaitingPayment            (request_payment / payment on signing)
    AwaitingPayment -> Active           (payment confirmed)
    AwaitingPayment -> Cancelled        (payment deadline passed)
    Draft/AwaitingPayment/Active -> Cancelled  (cancel)
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from staffing_broker.config import Settings, get_settings
from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import SYSTEM_ACTOR, Actor, EntityRef, Notification
from staffing_broker.domain.enums import (
    NON_TERMINAL_CONTRACT_STATUSES,
    ContractStatus,
    EntityKind,
    EventType,
    InvoiceStatus,
    PaymentSessionStatus,
    PaymentStatus,
    ReservationState,
    SessionCancelReason,
)
from staffing_broker.domain.exceptions import (
    ContractAlreadyExistsError,
    DomainValidationError,
    EntityNotFoundError,
    ExpiredError,
    InvalidStateTransitionError,
    NotProcessableError,
    UnauthorizedError,
    WorkerUnavailableError,
)
from staffing_broker.domain.state_machine import (
    CONTRACT_OPERATOR_EVENTS,
    ContractStateMachine,
    InvoiceStateMachine,
    PaymentSessionStateMachine,
    PaymentStateMachine,
    ReservationStateMachine,
    fire_transition,
)
from staffing_broker.infrastructure.database.orm_models import Contract, Invoice
from staffing_broker.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    InvoiceRepository,
    PaymentRepository,
    PaymentSessionRepository,
    ReservationRepository,
)
from staffing_broker.infrastructure.database.transactions import outbox_for
from staffing_broker.logging_config import get_logger
from staffing_broker.services.reservation_service import ReservationService
from staffing_broker.services.worker_ledger import WorkerLedger

if TYPE_CHECKING:
    import uuid
    from datetime import date

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_CLOSED_BY_OPERATOR = frozenset({ContractStatus.TERMINATED, ContractStatus.COMPLETED})


def _document_number(prefix: str, clock: Clock) -> str:
    return f"{prefix}-{clock.now():%Y%m%d}-{secrets.token_hex(4).upper()}"


class ContractService:
    """Manages contracts and their invoices."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._contract_repo = ContractRepository(session)
        self._invoice_repo = InvoiceRepository(session)
        self._reservation_repo = ReservationRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._session_repo = PaymentSessionRepository(session)
        self._event_repo = EventRepository(session)
        self._ledger = WorkerLedger(session, self._clock)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_from_reservation(
        self,
        reservation_id: uuid.UUID,
        customer_id: str,
        *,
        original_amount: Decimal,
        discount_amount: Decimal = Decimal("0"),
        terms_accepted: bool,
        package_id: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        payment_on_signing: bool | None = None,
        notes: str | None = None,
    ) -> Contract:
        """Create a contract and its invoice from a confirmed reservation.

        The reservation becomes Completed and the worker keeps its hold
        (ReservedAwaitingPayment) until the contract is activated.

        Raises:
            UnauthorizedError: The reservation belongs to another customer.
            ContractAlreadyExistsError: A contract was already created from it.
            NotProcessableError: The reservation is not confirmed.
            ExpiredError: The reservation lapsed (the expiry is committed).
            DomainValidationError: Terms not accepted or amounts inconsistent.
        """
        reservation = await self._reservation_repo.get_for_update(reservation_id)
        if reservation is None:
            raise EntityNotFoundError(EntityKind.RESERVATION, reservation_id)
        if reservation.customer_id != customer_id:
            raise UnauthorizedError("Reservation does not belong to this customer")

        existing = await self._contract_repo.get_by_reservation(reservation_id)
        if existing is not None:
            raise ContractAlreadyExistsError(reservation_id, existing.id)

        if reservation.state != ReservationState.AWAITING_PAYMENT:
            raise NotProcessableError(
                "Reservation is not confirmed",
                details={"reservation_id": str(reservation_id), "state": reservation.state},
            )
        if self._clock.now() >= reservation.expires_at:
            reservations = ReservationService(self._session, self._clock, self._settings)
            await reservations.expire_if_lapsed(reservation_id)
            raise ExpiredError(
                "Reservation has expired",
                details={"reservation_id": str(reservation_id)},
            )

        if not terms_accepted:
            raise DomainValidationError("Contract terms must be accepted")
        original_amount = Decimal(original_amount)
        discount_amount = Decimal(discount_amount)
        if original_amount < 0 or discount_amount < 0 or discount_amount > original_amount:
            raise DomainValidationError(
                "Discount must be between zero and the original amount",
                details={
                    "original_amount": str(original_amount),
                    "discount_amount": str(discount_amount),
                },
            )
        start_date = start_date or reservation.start_date
        end_date = end_date or reservation.end_date
        if end_date <= start_date:
            raise DomainValidationError(
                "Contract end date must be after its start date",
                details={"start_date": str(start_date), "end_date": str(end_date)},
            )

        now = self._clock.now()
        if payment_on_signing is None:
            payment_on_signing = self._settings.payment_on_signing
        status = ContractStatus.DRAFT
        payment_deadline = None
        if payment_on_signing:
            status = fire_transition(ContractStateMachine, status, "request_payment")
            payment_deadline = now + timedelta(hours=self._settings.contract_payment_window_hours)

        contract = Contract(
            contract_number=_document_number("CN", self._clock),
            reservation_id=reservation.id,
            customer_id=customer_id,
            worker_id=reservation.worker_id,
            package_id=package_id,
            start_date=start_date,
            end_date=end_date,
            original_amount=original_amount,
            discount_amount=discount_amount,
            total_amount=original_amount - discount_amount,
            currency=self._settings.currency,
            status=status,
            payment_deadline=payment_deadline,
            terms_accepted=True,
            notes=notes,
        )
        worker_id = reservation.worker_id
        if await self._contract_repo.get_open_for_worker(worker_id) is not None:
            raise WorkerUnavailableError(worker_id)

        try:
            contract = await self._contract_repo.create(contract)
        except IntegrityError as exc:
            # The session is rolled back here; only ids captured above are safe to read
            if "worker_id" in str(exc.orig) or "uq_contract_open_worker" in str(exc.orig):
                raise WorkerUnavailableError(worker_id) from exc
            raise ContractAlreadyExistsError(reservation_id) from exc

        invoice = await self._invoice_repo.create(
            Invoice(
                invoice_number=_document_number("INV", self._clock),
                contract_id=contract.id,
                customer_id=customer_id,
                amount=contract.total_amount,
                currency=contract.currency,
                due_date=now + timedelta(days=self._settings.invoice_due_days),
                status=InvoiceStatus.UNPAID,
            )
        )

        old_state = reservation.state
        reservation.state = fire_transition(
            ReservationStateMachine, reservation.state, "complete", target=ReservationState.COMPLETED
        )
        reservation.contract_id = contract.id
        await self._reservation_repo.save(reservation)
        await self._ledger.link_contract(reservation.worker_id, contract.id)

        actor = customer_id
        await self._event_repo.record(
            subject=EntityRef(EntityKind.CONTRACT, contract.id),
            event_type=EventType.CONTRACT_CREATED,
            old_status=None,
            new_status=contract.status,
            actor=actor,
            metadata={"reservation_id": reservation.id, "total_amount": contract.total_amount},
        )
        await self._event_repo.record(
            subject=EntityRef(EntityKind.INVOICE, invoice.id),
            event_type=EventType.INVOICE_CREATED,
            old_status=None,
            new_status=invoice.status,
            actor=actor,
            metadata={"contract_id": contract.id, "amount": invoice.amount},
        )
        await self._event_repo.record(
            subject=EntityRef(EntityKind.RESERVATION, reservation.id),
            event_type=EventType.RESERVATION_COMPLETED,
            old_status=old_state,
            new_status=reservation.state,
            actor=actor,
            metadata={"contract_id": contract.id},
        )
        self._notify(contract, "contract.created")

        logger.info(
            "contract.created",
            contract_id=str(contract.id),
            reservation_id=str(reservation_id),
            status=contract.status,
            total_amount=str(contract.total_amount),
        )
        return contract

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    async def transition_status(
        self,
        contract_id: uuid.UUID,
        target: ContractStatus,
        actor: Actor,
        notes: str | None = None,
    ) -> Contract:
        """Apply an operator status change from the contract status table.

        Raises:
            InvalidStateTransitionError: The from/to pair is not in the table.
        """
        target = ContractStatus(target)
        contract = await self._get_for_update_or_raise(contract_id)

        event_name = CONTRACT_OPERATOR_EVENTS.get(target)
        if event_name is None:
            raise InvalidStateTransitionError(contract.status, target)
        old_status = contract.status
        contract.status = fire_transition(
            ContractStateMachine, contract.status, event_name, target=target
        )
        if notes:
            contract.notes = notes
        now = self._clock.now()

        if target == ContractStatus.ACTIVE:
            contract.activated_at = contract.activated_at or now
            await self._contract_repo.save(contract)
            await self._ledger.assign(contract.worker_id, contract.id, actor)
        elif target in _CLOSED_BY_OPERATOR:
            contract.ended_at = now
            await self._contract_repo.save(contract)
            await self._ledger.release(contract.worker_id, actor, reason=f"contract {target}")
            await self._close_open_payments(contract, actor)
        elif target == ContractStatus.CANCELLED:
            contract.cancelled_at = now
            contract.cancellation_reason = notes
            await self._contract_repo.save(contract)
            await self._cancel_cascade(contract, actor, notes or "Cancelled by operator")
        else:
            await self._contract_repo.save(contract)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.CONTRACT, contract.id),
            event_type=EventType.CONTRACT_STATUS_CHANGED,
            old_status=old_status,
            new_status=contract.status,
            actor=actor.id,
            metadata={"notes": notes} if notes else None,
        )
        self._notify(contract, "contract.status_changed", old_status=old_status)
        logger.info(
            "contract.status_changed",
            contract_id=str(contract_id),
            old_status=old_status,
            new_status=contract.status,
        )
        return contract

    async def request_payment(self, contract_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR) -> Contract:
        """Draft -> AwaitingPayment, opening the payment window."""
        contract = await self._get_for_update_or_raise(contract_id)
        old_status = contract.status
        contract.status = fire_transition(
            ContractStateMachine,
            contract.status,
            "request_payment",
            target=ContractStatus.AWAITING_PAYMENT,
        )
        contract.payment_deadline = self._clock.now() + timedelta(
            hours=self._settings.contract_payment_window_hours
        )
        await self._contract_repo.save(contract)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.CONTRACT, contract.id),
            event_type=EventType.CONTRACT_STATUS_CHANGED,
            old_status=old_status,
            new_status=contract.status,
            actor=actor.id,
            metadata={"payment_deadline": contract.payment_deadline},
        )
        self._notify(contract, "contract.payment_requested")
        logger.info("contract.payment_requested", contract_id=str(contract_id))
        return contract

    async def activate_paid_contract(self, contract: Contract, actor: Actor = SYSTEM_ACTOR) -> Contract:
        """AwaitingPayment -> Active once its invoice is paid. Caller holds the contract lock."""
        old_status = contract.status
        contract.status = fire_transition(
            ContractStateMachine,
            contract.status,
            "confirm_payment",
            target=ContractStatus.ACTIVE,
        )
        contract.activated_at = self._clock.now()
        await self._contract_repo.save(contract)
        await self._ledger.assign(contract.worker_id, contract.id, actor)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.CONTRACT, contract.id),
            event_type=EventType.CONTRACT_STATUS_CHANGED,
            old_status=old_status,
            new_status=contract.status,
            actor=actor.id,
            metadata={"trigger": "payment"},
        )
        self._notify(contract, "contract.activated")
        logger.info("contract.activated", contract_id=str(contract.id))
        return contract

    async def cancel(
        self,
        contract_id: uuid.UUID,
        reason: str,
        actor: Actor = SYSTEM_ACTOR,
        customer_id: str | None = None,
    ) -> Contract:
        """Cancel a Draft, AwaitingPayment or Active contract with its full cascade."""
        if not reason or not reason.strip():
            raise DomainValidationError("A cancellation reason is required")
        contract = await self._get_for_update_or_raise(contract_id)
        if customer_id is not None and contract.customer_id != customer_id:
            raise UnauthorizedError("Contract does not belong to this customer")
        return await self._cancel(contract, "cancel", reason.strip(), actor)

    async def expire_unpaid(self, contract_id: uuid.UUID) -> bool:
        """Cancel an AwaitingPayment contract whose payment deadline passed (sweeper)."""
        contract = await self._contract_repo.get_for_update(contract_id)
        if (
            contract is None
            or contract.status != ContractStatus.AWAITING_PAYMENT
            or contract.payment_deadline is None
            or self._clock.now() < contract.payment_deadline
        ):
            return False
        await self._cancel(contract, "expire_payment", "Payment deadline expired", SYSTEM_ACTOR)
        return True

    async def mark_invoice_overdue(self, invoice_id: uuid.UUID) -> bool:
        """Unpaid -> Overdue once the due date passes, for contracts still open (sweeper)."""
        invoice = await self._invoice_repo.get_for_update(invoice_id)
        if (
            invoice is None
            or invoice.status != InvoiceStatus.UNPAID
            or self._clock.now() < invoice.due_date
        ):
            return False
        contract = await self._contract_repo.get_by_id(invoice.contract_id)
        if contract is None or contract.status not in NON_TERMINAL_CONTRACT_STATUSES:
            return False
        old_status = invoice.status
        invoice.status = fire_transition(InvoiceStateMachine, invoice.status, "mark_overdue")
        await self._invoice_repo.save(invoice)
        await self._event_repo.record(
            subject=EntityRef(EntityKind.INVOICE, invoice.id),
            event_type=EventType.INVOICE_OVERDUE,
            old_status=old_status,
            new_status=invoice.status,
            metadata={"due_date": invoice.due_date},
        )
        logger.info("invoice.overdue", invoice_id=str(invoice_id))
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, contract_id: uuid.UUID, customer_id: str | None = None) -> Contract:
        contract = await self._contract_repo.get_by_id(contract_id)
        if contract is None:
            raise EntityNotFoundError(EntityKind.CONTRACT, contract_id)
        if customer_id is not None and contract.customer_id != customer_id:
            raise UnauthorizedError("Contract does not belong to this customer")
        return contract

    async def get_invoice(self, contract_id: uuid.UUID, customer_id: str | None = None) -> Invoice:
        if customer_id is not None:
            await self.get(contract_id, customer_id)
        invoice = await self._invoice_repo.get_by_contract(contract_id)
        if invoice is None:
            raise EntityNotFoundError(EntityKind.INVOICE, contract_id)
        return invoice

    async def list_for_customer(self, customer_id: str) -> list[Contract]:
        return await self._contract_repo.list_for_customer(customer_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _cancel(self, contract: Contract, event_name: str, reason: str, actor: Actor) -> Contract:
        old_status = contract.status
        contract.status = fire_transition(
            ContractStateMachine, contract.status, event_name, target=ContractStatus.CANCELLED
        )
        contract.cancelled_at = self._clock.now()
        contract.cancellation_reason = reason
        await self._contract_repo.save(contract)

        await self._cancel_cascade(contract, actor, reason)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.CONTRACT, contract.id),
            event_type=EventType.CONTRACT_CANCELLED,
            old_status=old_status,
            new_status=contract.status,
            actor=actor.id,
            metadata={"reason": reason},
        )
        self._notify(contract, "contract.cancelled", reason=reason)
        logger.info(
            "contract.cancelled",
            contract_id=str(contract.id),
            old_status=old_status,
            reason=reason,
        )
        return contract

    async def _cancel_cascade(self, contract: Contract, actor: Actor, reason: str) -> None:
        """Worker back to the pool, reservation cancelled, open payments closed."""
        await self._ledger.release(contract.worker_id, actor, reason=reason)

        reservation = await self._reservation_repo.get_for_update(contract.reservation_id)
        if reservation is not None and reservation.state != ReservationState.CANCELLED:
            event_name = "void" if reservation.state == ReservationState.COMPLETED else "cancel"
            old_state = reservation.state
            reservation.state = fire_transition(
                ReservationStateMachine,
                reservation.state,
                event_name,
                target=ReservationState.CANCELLED,
            )
            reservation.cancellation_reason = reason
            reservation.cancelled_at = self._clock.now()
            await self._reservation_repo.save(reservation)
            await self._event_repo.record(
                subject=EntityRef(EntityKind.RESERVATION, reservation.id),
                event_type=EventType.RESERVATION_CANCELLED,
                old_status=old_state,
                new_status=reservation.state,
                actor=actor.id,
                metadata={"contract_id": contract.id, "reason": reason},
            )

        await self._close_open_payments(contract, actor)

    async def _close_open_payments(self, contract: Contract, actor: Actor) -> None:
        now = self._clock.now()
        for payment in await self._payment_repo.list_open_for_contract(contract.id):
            old_status = payment.status
            payment.status = fire_transition(
                PaymentStateMachine, payment.status, "cancel", target=PaymentStatus.CANCELLED
            )
            payment.cancelled_at = now
            await self._payment_repo.save(payment)
            await self._event_repo.record(
                subject=EntityRef(EntityKind.PAYMENT, payment.id),
                event_type=EventType.PAYMENT_CANCELLED,
                old_status=old_status,
                new_status=payment.status,
                actor=actor.id,
                metadata={"contract_id": contract.id},
            )

        for session in await self._session_repo.list_pending_for_contract(contract.id):
            session.status = fire_transition(
                PaymentSessionStateMachine,
                session.status,
                "cancel",
                target=PaymentSessionStatus.CANCELLED,
            )
            session.cancel_reason = SessionCancelReason.CONTRACT_CLOSED
            session.cancelled_at = now
            await self._session_repo.save(session)
            await self._event_repo.record(
                subject=EntityRef(EntityKind.PAYMENT_SESSION, session.id),
                event_type=EventType.PAYMENT_SESSION_CANCELLED,
                old_status=PaymentSessionStatus.PENDING,
                new_status=session.status,
                actor=actor.id,
                metadata={"reason": SessionCancelReason.CONTRACT_CLOSED},
            )

    def _notify(self, contract: Contract, event_type: str, **payload: object) -> None:
        outbox_for(self._session).notifications.append(
            Notification(
                user_id=contract.customer_id,
                event_type=event_type,
                subject=EntityRef(EntityKind.CONTRACT, contract.id),
                payload={"status": str(contract.status), **payload},
            )
        )

    async def _get_for_update_or_raise(self, contract_id: uuid.UUID) -> Contract:
        contract = await self._contract_repo.get_for_update(contract_id)
        if contract is None:
            raise EntityNotFoundError(EntityKind.CONTRACT, contract_id)
        return contract
